"""
Logging for the LEAPS core.

Wraps :mod:`logging` so that every module gets a logger with the same
handler, format, and level (from ``LOGLEVEL``).
"""

import logging
import sys

from .globals import get_application_config

FORMAT = '%(asctime)s - %(process)d: [%(name)s] %(levelname)s: ' \
         '"%(message)s"'
DATEFMT = '%d/%b/%Y:%H:%M:%S %z'


def getLogger(name: str, stream=sys.stderr) -> logging.Logger:
    """
    Wrapper for :func:`logging.getLogger` that applies configuration.

    Parameters
    ----------
    name : str
    stream : io.IOBase
        Output stream for the handler. Defaults to stderr.

    Returns
    -------
    :class:`logging.Logger`

    """
    logger = logging.getLogger(name)
    if not any(getattr(h, '_leaps', False) for h in logger.handlers):
        handler = logging.StreamHandler(stream)
        handler.setFormatter(logging.Formatter(FORMAT, datefmt=DATEFMT))
        setattr(handler, '_leaps', True)
        logger.addHandler(handler)
        logger.propagate = False
    logger.setLevel(int(get_application_config().get('LOGLEVEL', 20)))
    return logger
