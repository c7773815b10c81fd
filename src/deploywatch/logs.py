import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(level: str = "INFO") -> None:
    # stdout carries the event records, so logs go to stderr
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)-12s %(levelname)-8s %(message)s",
        handlers=[RichHandler(rich_tracebacks=True, console=Console(stderr=True))],
    )
