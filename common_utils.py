#!/usr/bin/env python

import logging
import sys
from logging.handlers import RotatingFileHandler

LOG_FORMAT = '%(asctime)s %(module)s[%(process)d:%(thread)d]:%(lineno)d %(levelname)s: %(message)s'


# noinspection SpellCheckingInspection
def setup_logging(logger, logfile, max_bytes=None, backup_count=None, verbose=False):
    """Sets up logging and associated handlers.

    Rotates logfile when both max_bytes and backup_count are given, logs to
    stdout otherwise.
    """

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if backup_count is not None and max_bytes is not None:
        assert backup_count > 0
        assert max_bytes > 0
        ch = RotatingFileHandler(logfile, 'a', max_bytes, backup_count)
    else:  # Setup stream handler.
        ch = logging.StreamHandler(sys.stdout)

    ch.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(ch)
    return ch
