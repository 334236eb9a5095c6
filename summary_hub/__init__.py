"""Summary Hub: share, browse and moderate student course summaries."""

__version__ = "0.1.0"
