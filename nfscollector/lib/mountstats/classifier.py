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
"""Maps a mountstats statistics line to metrics.

See https://utcc.utoronto.ca/~cks/space/blog/linux/NFSMountstatsIndex
  and https://utcc.utoronto.ca/~cks/space/blog/linux/NFSMountstatsNFSOps
for what the kernel puts on each line.

  events:  <27 counters>                            -> nfs_events
  bytes:   <8 counters>                             -> nfs_bytes
  xprt:    tcp <port> <9 counters> ...              -> nfs_xprt_tcp
  xprt:    udp <port> <6 counters> ...              -> nfs_xprt_udp
  READ:    <ops> <trans> <timeouts> <tx> <rx> ...   -> nfsstat, nfs_ops
  GETATTR: <ops> <trans> <timeouts> <tx> <rx> ...   -> nfs_ops

Only nfsstat is produced unless full statistics are enabled.
"""

import logging

from nfscollector.lib.mountstats.convert import wrap_uint64
from nfscollector.lib.mountstats.metric import Metric

LOG = logging.getLogger(__name__)

# measurement names
BASIC_MEASUREMENT = "nfsstat"
EVENTS_MEASUREMENT = "nfs_events"
BYTES_MEASUREMENT = "nfs_bytes"
XPRT_TCP_MEASUREMENT = "nfs_xprt_tcp"
XPRT_UDP_MEASUREMENT = "nfs_xprt_udp"
OPS_MEASUREMENT = "nfs_ops"

# EVENTS_FIELDS is individual fields in the 'events:' line
EVENTS_FIELDS = [
    "inoderevalidates", "dentryrevalidates", "datainvalidates", "attrinvalidates",
    "vfsopen", "vfslookup", "vfsaccess", "vfsupdatepage", "vfsreadpage",
    "vfsreadpages", "vfswritepage", "vfswritepages", "vfsgetdents", "vfssetattr",
    "vfsflush", "vfsfsync", "vfslock", "vfsrelease", "congestionwait",
    "setattrtrunc", "extendwrite", "sillyrenames", "shortreads", "shortwrites",
    "delay", "pnfsreads", "pnfswrites",
]

# BYTES_FIELDS is individual fields in the 'bytes:' line
BYTES_FIELDS = [
    "normalreadbytes", "normalwritebytes", "directreadbytes", "directwritebytes",
    "serverreadbytes", "serverwritebytes", "readpages", "writepages",
]

# the first two fields of an 'xprt:' line are the transport name and the local port
XPRT_OFFSET = 2

XPRT_TCP_FIELDS = [
    "bind_count", "connect_count", "connect_time", "idle_time",
    "rpcsends", "rpcreceives", "badxids", "inflightsends", "backlogutil",
]

XPRT_UDP_FIELDS = [
    "bind_count", "rpcsends", "rpcreceives", "badxids", "inflightsends", "backlogutil",
]

# RPC_FIELDS is the individual metric fields on the per-op lines
RPC_FIELDS = [
    "ops", "trans", "timeouts", "bytes_sent", "bytes_recv",
    "queue_time", "response_time", "total_time", "errors",
]

BASIC_OPERATIONS = ("READ", "WRITE")

# READ/WRITE need fields up to total_time
BASIC_MIN_FIELDS = 8


def category_key(token):
    """'READ:' -> 'READ', only the first colon is dropped."""
    return token.replace(":", "", 1)


def _positional(names, values, offset=0):
    return [(name, values[i + offset]) for i, name in enumerate(names)]


class StatClassifier(object):
    def __init__(self, fullstat, operations, logger=None):
        self.fullstat = fullstat
        self.operations = operations
        self._log = logger or LOG

    def classify(self, context, tokens, values):
        """Returns the metrics for one statistics line.

        context is the current MountContext, tokens the raw split line and
        values the converted tokens[1:].
        """
        if not values:
            self._log.warning("Parsing Stat line with one field: %s", tokens)
            return []

        first = category_key(tokens[0])
        metrics = []

        if first in BASIC_OPERATIONS:
            basic = self._basic(context, first, values)
            if basic is not None:
                metrics.append(basic)

        if not self.fullstat:
            return metrics

        if first == "events":
            if len(values) >= len(EVENTS_FIELDS):
                metrics.append(Metric(EVENTS_MEASUREMENT, self._tags(context),
                                      _positional(EVENTS_FIELDS, values)))
        elif first == "bytes":
            if len(values) >= len(BYTES_FIELDS):
                metrics.append(Metric(BYTES_MEASUREMENT, self._tags(context),
                                      _positional(BYTES_FIELDS, values)))
        elif first == "xprt":
            xprt = self._xprt(context, tokens, values)
            if xprt is not None:
                metrics.append(xprt)

        if self.operations.is_tracked(context.version, first):
            # extra fields would shift every name, so the line is dropped rather than truncated
            if len(values) <= len(RPC_FIELDS):
                metrics.append(Metric(OPS_MEASUREMENT, self._tags(context, first),
                                      zip(RPC_FIELDS, values)))
            else:
                self._log.debug("ignoring %s line with %d fields", first, len(values))

        return metrics

    def _tags(self, context, operation=None):
        tags = {"mountpoint": context.mount, "serverexport": context.export}
        if operation is not None:
            tags["operation"] = operation
        return tags

    def _basic(self, context, operation, values):
        if len(values) < BASIC_MIN_FIELDS:
            self._log.debug("ignoring short %s line: %s", operation, values)
            return None

        ops = values[0]
        rtt = values[6]
        if ops > 0:
            rtt_per_op = float(rtt) / float(ops)
        else:
            rtt_per_op = 0.0

        fields = [
            ("ops", ops),
            ("retrans", wrap_uint64(values[1] - values[0])),
            ("bytes", wrap_uint64(values[3] + values[4])),
            ("rtt", rtt),
            ("exe", values[7]),
            ("rtt_per_op", rtt_per_op),
        ]
        return Metric(BASIC_MEASUREMENT, self._tags(context, operation), fields)

    def _xprt(self, context, tokens, values):
        if len(tokens) < 2:
            return None

        transport = tokens[1]
        if transport == "tcp":
            measurement, names = XPRT_TCP_MEASUREMENT, XPRT_TCP_FIELDS
        elif transport == "udp":
            measurement, names = XPRT_UDP_MEASUREMENT, XPRT_UDP_FIELDS
        else:
            return None

        if len(values) < XPRT_OFFSET + len(names):
            return None
        return Metric(measurement, self._tags(context), _positional(names, values, XPRT_OFFSET))
