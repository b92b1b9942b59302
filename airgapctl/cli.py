import logging
import sys

import typer

from airgapctl.commands import images, install, validate
from airgapctl.config import Config
from airgapctl.logging import add_file_handler

app = typer.Typer(help="Offline Kubernetes cluster installer")

debug_mode = False


def setup_logging(debug_mode: bool = False):
    """Configure logging based on debug mode."""
    log_level = logging.DEBUG if debug_mode else getattr(logging, Config.LOG_LEVEL, logging.INFO)
    logging.basicConfig(
        level=log_level,
        format=Config.LOG_FORMAT,
        handlers=[
            logging.StreamHandler()
        ]
    )
    add_file_handler(Config.LOG_FILE)
    # Disable debug logging for noisy libraries
    if not debug_mode:
        logging.getLogger('paramiko').setLevel(logging.WARNING)
        logging.getLogger('urllib3').setLevel(logging.WARNING)


app.command("install")(install.install)
app.command("validate")(validate.validate)
app.command("images")(images.list_images)
app.command("sync-images")(images.sync_images)


@app.callback()
def main(
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug logging"),
):
    """airgapctl - offline Kubernetes cluster installer."""
    global debug_mode
    debug_mode = debug
    setup_logging(debug)
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.debug("Debug mode enabled")


if __name__ == "__main__":
    try:
        app()
    except Exception as e:
        if debug_mode:
            import traceback
            logging.error(f"Unhandled exception: {e}\n{traceback.format_exc()}")
        else:
            logging.error(f"Error: {e}")
        sys.exit(1)
