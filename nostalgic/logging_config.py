"""
Logging setup for the service.

``setup_logging`` configures the root logger once, at application
startup.  Every module logs through ``logging.getLogger(__name__)``.
"""
import logging
from pathlib import Path


def setup_logging(level: str = "INFO", logfile: str | None = None) -> None:
    """Attach a console handler (and optionally a file handler) to the root logger.

    Does nothing when the root logger already has handlers, so repeated
    application startups in one process (tests) do not stack handlers.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if logfile:
        file_handler = logging.FileHandler(Path(logfile).resolve(), encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
