#!/usr/bin/env python
# This file is part of nfscollector.
# Copyright (C) 2013-2026  The tcollector Authors.
#
# This program is free software: you can redistribute it and/or modify it
# under the terms of the GNU Lesser General Public License as published by
# the Free Software Foundation, either version 3 of the License, or (at your
# option) any later version.  This program is distributed in the hope that it
# will be useful, but WITHOUT ANY WARRANTY; without even the implied warranty
# of MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the GNU Lesser
# General Public License for more details.  You should have received a copy
# of the GNU Lesser General Public License along with this program.  If not,
# see <http://www.gnu.org/licenses/>.
"""NFS client statistics from /proc/self/mountstats"""
#
# nfsclient.py
#
# nfsstat.<field>        ops retrans bytes rtt exe rtt_per_op, for READ and WRITE
# nfs_events.<field>     the 'events:' line                      (fullstat only)
# nfs_bytes.<field>      the 'bytes:' line                       (fullstat only)
# nfs_xprt_tcp.<field>   the 'xprt: tcp' line                    (fullstat only)
# nfs_xprt_udp.<field>   the 'xprt: udp' line                    (fullstat only)
# nfs_ops.<field>        one per tracked per-op statistics line  (fullstat only)
#
# All metrics are tagged with mountpoint= and serverexport=, the per operation
# ones with operation= too.
#
# Example output:
# nfsstat.ops 1464196613 1570976 mountpoint=/mnt/vol0 operation=READ serverexport=fls1_/vol/vol0
# nfsstat.rtt_per_op 1464196613 1.0719 mountpoint=/mnt/vol0 operation=READ serverexport=fls1_/vol/vol0
#
# Set MOUNT_PROC to read another file than /proc/self/mountstats.

import os
import time

from nfscollector.lib import utils
from nfscollector.lib.collectorbase import CollectorBase
from nfscollector.lib.mountstats.classifier import StatClassifier
from nfscollector.lib.mountstats.filters import MountFilter, OperationTable
from nfscollector.lib.mountstats.scanner import MountstatsScanner

DEFAULT_MOUNTSTATS_PATH = "/proc/self/mountstats"
MOUNTSTATS_PATH_ENV = "MOUNT_PROC"


def get_mountstats_path():
    return os.environ.get(MOUNTSTATS_PATH_ENV) or DEFAULT_MOUNTSTATS_PATH


class NfsClient(CollectorBase):
    def __init__(self, config, logger, readq):
        super(NfsClient, self).__init__(config, logger, readq)
        self.fullstat = self.get_config_bool('fullstat', False)
        self.metric_prefix = self.get_config('metric_prefix', '')
        self.mountstats_path = get_mountstats_path()
        self.log_debug("using [%s] for mountstats", self.mountstats_path)

        # raises on a bad pattern, the collector is not loaded then
        mount_filter = MountFilter(utils.split_lines(self.get_config('include_mounts')),
                                   utils.split_lines(self.get_config('exclude_mounts')),
                                   logger)
        operations = OperationTable(utils.split_names(self.get_config('include_operations')),
                                    utils.split_names(self.get_config('exclude_operations')),
                                    logger)
        self.scanner = MountstatsScanner(mount_filter, StatClassifier(self.fullstat, operations, logger), logger)

    def __call__(self):
        ts = int(time.time())
        try:
            with open(self.mountstats_path, "r", encoding="utf-8", errors="surrogateescape") as f_mountstats:
                count = self.scanner.scan(f_mountstats, lambda metric: self.print_metric(metric, ts))
        except IOError as e:
            self.log_error("Failed opening the %r file: %s", self.mountstats_path, e)
            raise
        self.log_debug("%d nfs metrics from %s", count, self.mountstats_path)

    def print_metric(self, metric, ts):
        for line in metric.get_metric_lines(ts, self.metric_prefix):
            self._readq.nput(line)


if __name__ == "__main__":
    nfsclient_inst = NfsClient(None, None, utils.TestQueue())
    nfsclient_inst()
