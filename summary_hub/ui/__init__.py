"""Console presentation for Summary Hub."""
