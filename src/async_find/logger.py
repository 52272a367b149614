"""Process-wide logging setup.

Modules import ``logging`` from here so the handler is installed exactly once,
whichever entry point (front-end or worker) runs first::

    from async_find.logger import logging

    logger = logging.getLogger(__name__)
"""

import logging
import os
import sys

LOG_LEVEL_ENV_VAR = "ASYNC_FIND_LOG_LEVEL"
LOG_FILE_ENV_VAR = "ASYNC_FIND_LOG_FILE"

LOG_FORMAT = "%(asctime)s [%(process)d] %(levelname)s %(name)s: %(message)s"

_configured = False


def configure(level: str | None = None, log_file: str | None = None):
    """
    Install the package handler on the ``async_find`` logger.

    Explicit arguments win over the environment. Calling again replaces the
    handler, which lets the CLI apply ``--log-level`` after import time.
    """
    global _configured

    level = (level or os.environ.get(LOG_LEVEL_ENV_VAR) or "WARNING").upper()
    log_file = log_file or os.environ.get(LOG_FILE_ENV_VAR)

    if log_file:
        handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    package_logger = logging.getLogger("async_find")
    for old in list(package_logger.handlers):
        package_logger.removeHandler(old)
        old.close()
    package_logger.addHandler(handler)
    package_logger.setLevel(level)
    package_logger.propagate = False
    _configured = True


if not _configured:
    configure()
