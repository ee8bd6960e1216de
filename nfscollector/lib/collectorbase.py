#!/usr/bin/env python

import sys


class CollectorBase(object):
    def __init__(self, config, logger, readq):
        self._config = config
        self._logger = logger
        self._readq = readq
        self._exit = False
        """ long running collector need to check this flag to ensure responsive to shut down request to this collector"""

    def __call__(self, *arg):
        """
        any collector needs to implement it to collect metrics
        Returns: None

        """
        pass

    def cleanup(self):
        """
        any collector uses expensive OS resources like filehandles or sockets, etc. needs to close them here,
        Returns:None

        """
        pass

    def signal_exit(self):
        """
        signal collector to exit. any long running collector need to check _exit flag to ensure responsive to shut
        down request to this collector
        Returns:

        """
        self._exit = True

    # below are convenient methods available to all collectors
    def log_debug(self, msg, *args, **kwargs):
        if self._logger:
            self._logger.debug(msg, *args, **kwargs)

    def log_info(self, msg, *args, **kwargs):
        if self._logger:
            self._logger.info(msg, *args, **kwargs)
        else:
            sys.stdout.write("INFO: " + msg % args + "\n")

    def log_error(self, msg, *args, **kwargs):
        if self._logger:
            self._logger.error(msg, *args, **kwargs)
        else:
            sys.stderr.write("ERROR: " + msg % args + "\n")

    def log_warn(self, msg, *args, **kwargs):
        if self._logger:
            self._logger.warning(msg, *args, **kwargs)
        else:
            sys.stdout.write("WARN: " + msg % args + "\n")

    def log_exception(self, msg, *args, **kwargs):
        if self._logger:
            self._logger.exception(msg, *args, **kwargs)
        else:
            sys.stderr.write("ERROR: " + msg % args + "\n")

    def get_config(self, key, default=None, section='base'):
        if self._config and self._config.has_option(section, key):
            return self._config.get(section, key)
        else:
            return default

    def get_config_bool(self, key, default=False, section='base'):
        if self._config and self._config.has_option(section, key):
            return self._config.getboolean(section, key)
        else:
            return default
