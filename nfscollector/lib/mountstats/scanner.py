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
"""Single pass scanner over /proc/self/mountstats.

A mount block looks like this (abridged):

  device fls1:/vol/vol0 mounted on /mnt/vol0 with fstype nfs statvers=1.1
          opts:   rw,vers=3,rsize=65536,wsize=65536,...
          events: 1570976 2670792 0 ...
          bytes:  41494104 10145341022 0 0 8413526 10145494716 2157 2477054
          RPC iostats version: 1.0  p/v: 100003/3 (nfs)
          xprt:   tcp 875 1 2 0 0 1570976 1570976 0 1570976 0 ...
          per-op statistics
                  NULL: 0 0 0 0 0 0 0 0
               GETATTR: 1570976 1570976 0 244313360 263929348 14216 1683992 2670792 0

Every line after a 'device' line belongs to that mount until the next
'device' line.  The NFS version comes from the 'p/v:' token of the
'RPC iostats' line.
"""

import logging

from nfscollector.lib.mountstats.convert import convert_fields

LOG = logging.getLogger(__name__)


class MountContext(object):
    """Where we are in the file: the current mount, its export and NFS version."""

    def __init__(self, mount="", export="", version=""):
        self.mount = mount
        self.export = export
        self.version = version

    def __repr__(self):
        return "MountContext(mount=%r, export=%r, version=%r)" % (self.mount, self.export, self.version)


def is_block_start(tokens):
    return len(tokens) > 4 and "fstype" in tokens and ("nfs" in tokens or "nfs4" in tokens)


def is_version_marker(tokens):
    return len(tokens) > 5 and ("(nfs)" in tokens or "(nfs4)" in tokens)


def parse_version(tokens):
    """'100003/3' -> '3', None if the token has no '/'."""
    parts = tokens[5].split("/")
    if len(parts) < 2:
        return None
    return parts[1]


class MountstatsScanner(object):
    def __init__(self, mount_filter, classifier, logger=None):
        self.mount_filter = mount_filter
        self.classifier = classifier
        self._log = logger or LOG

    def iter_metrics(self, lines):
        """Yields metrics for every accepted statistics line in lines.

        Raises FieldOverflowError from the line that overflowed; nothing
        after that line is read.
        """
        context = MountContext()
        for line in lines:
            tokens = line.split()
            if not tokens:
                continue

            if is_block_start(tokens):
                context.mount = tokens[4]
                context.export = tokens[1]
                continue

            if is_version_marker(tokens):
                version = parse_version(tokens)
                if version is None:
                    self._log.debug("no version in %r, keeping %r", tokens[5], context.version)
                else:
                    context.version = version
                continue

            if not context.mount:
                continue

            if not self.mount_filter.accepts(context.mount):
                continue

            values = convert_fields(tokens)
            for metric in self.classifier.classify(context, tokens, values):
                yield metric

    def scan(self, lines, emit):
        """Calls emit(metric) once per metric, returns how many were emitted."""
        count = 0
        for metric in self.iter_metrics(lines):
            emit(metric)
            count += 1
        return count
