"""Logging setup for the medvault command line.

Command results (generated keys, migration counts) go to stdout; log records
go to stderr so piping a command's output never picks them up.
"""

import logging
import sys


LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"
VERBOSE_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"

# third-party loggers held at WARNING unless --verbose
LIBRARY_LOGGERS = ("keyring",)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=VERBOSE_FORMAT if verbose else LOG_FORMAT,
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
    for name in LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)
