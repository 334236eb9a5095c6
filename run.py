"""Entry-point for the Summary Hub application."""

from __future__ import annotations

import getpass
import inspect
import logging
from pathlib import Path
from typing import Optional

import uvicorn
import typer

from summary_hub.bootstrap import initialize_app
from summary_hub.config import AppConfig
from summary_hub.logging_utils import DEFAULT_LOG_FORMAT, configure_logging, get_log_file_path
from summary_hub.services.records import RecordStore
from summary_hub.services.sessions import hash_password
from summary_hub.ui.overview import OverviewUI
from summary_hub.web import create_app
from summary_hub.web.server import normalize_root_path


LOGGER = logging.getLogger("summary_hub.cli")

# Headroom for multipart boundaries and the text fields sent with the files.
_FORM_OVERHEAD_BYTES = 1024 * 1024


cli = typer.Typer(add_completion=False, help="Summary Hub management commands")


def _prepare_logging(storage_root: Path) -> None:
    log_file = get_log_file_path(storage_root)
    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    configure_logging(handlers=[file_handler, stream_handler])


def get_request_size_limit(config: AppConfig) -> int:
    """Largest request body the server accepts: a full multi-file batch."""

    if config.max_upload_bytes <= 0:
        return 0
    return config.max_upload_bytes * max(config.max_batch_files, 1) + _FORM_OVERHEAD_BYTES


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None)


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="SUMMARY_HUB_ROOT_PATH",
    ),
) -> None:
    """Run the FastAPI-powered web service."""

    app_config = initialize_app()
    _prepare_logging(app_config.storage_root)

    normalized_root = normalize_root_path(root_path)
    app = create_app(app_config, root_path=normalized_root)

    config_kwargs = {}
    request_limit = get_request_size_limit(app_config)
    if request_limit > 0:
        config_signature = inspect.signature(uvicorn.Config.__init__)
        if "limit_max_request_size" in config_signature.parameters:
            config_kwargs["limit_max_request_size"] = request_limit
        else:
            LOGGER.warning(
                "Ignoring max request size; uvicorn.Config does not support "
                "'limit_max_request_size'.",
            )

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
        **config_kwargs,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server
    LOGGER.info("Serving Summary Hub on http://%s:%s%s/", host, port, normalized_root)
    server.run()


@cli.command()
def overview(
    year: Optional[int] = typer.Option(None, "--year", "-y", help="Only show this year filter"),
) -> None:
    """Render an overview of the shared summaries."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    OverviewUI(RecordStore(config), year=year).run()


@cli.command("hash-password")
def hash_password_command(
    password: Optional[str] = typer.Option(
        None,
        "--password",
        "-p",
        help="Password to hash; prompted for when omitted.",
    ),
) -> None:
    """Print the hash to store under ``admin.password_hash``."""

    if password is None:
        password = getpass.getpass("Admin password: ")
        confirmation = getpass.getpass("Repeat password: ")
        if password != confirmation:
            raise typer.BadParameter("Passwords do not match.", param_hint="--password")
    if not password:
        raise typer.BadParameter("The password cannot be empty.", param_hint="--password")
    typer.echo(hash_password(password))


if __name__ == "__main__":
    cli()
