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
"""mount point and NFS operation filters"""

import logging
import re

LOG = logging.getLogger(__name__)

# per-op statistics names, in the order the kernel prints them
NFS3_OPERATIONS = (
    "NULL", "GETATTR", "SETATTR", "LOOKUP", "ACCESS", "READLINK",
    "READ", "WRITE", "CREATE", "MKDIR", "SYMLINK", "MKNOD",
    "REMOVE", "RMDIR", "RENAME", "LINK", "READDIR", "READDIRPLUS",
    "FSSTAT", "FSINFO", "PATHCONF", "COMMIT",
)

NFS4_OPERATIONS = (
    "NULL", "READ", "WRITE", "COMMIT", "OPEN", "OPEN_CONFIRM", "OPEN_NOATTR",
    "OPEN_DOWNGRADE", "CLOSE", "SETATTR", "FSINFO", "RENEW", "SETCLIENTID",
    "SETCLIENTID_CONFIRM", "LOCK", "LOCKT", "LOCKU", "ACCESS", "GETATTR",
    "LOOKUP", "LOOKUP_ROOT", "REMOVE", "RENAME", "LINK", "SYMLINK", "CREATE",
    "PATHCONF", "STATFS", "READLINK", "READDIR", "SERVER_CAPS", "DELEGRETURN",
    "GETACL", "SETACL", "FS_LOCATIONS", "RELEASE_LOCKOWNER", "SECINFO",
    "FSID_PRESENT",
    # nfsv4.1
    "EXCHANGE_ID", "CREATE_SESSION", "DESTROY_SESSION", "SEQUENCE",
    "GET_LEASE_TIME", "RECLAIM_COMPLETE", "LAYOUTGET", "GETDEVICEINFO",
    "LAYOUTCOMMIT", "LAYOUTRETURN", "SECINFO_NO_NAME", "TEST_STATEID",
    "FREE_STATEID", "GETDEVICELIST", "BIND_CONN_TO_SESSION",
    "DESTROY_CLIENTID",
    # nfsv4.2
    "SEEK", "ALLOCATE", "DEALLOCATE", "LAYOUTSTATS", "CLONE", "COPY",
    "OFFLOAD_CANCEL", "LOOKUPP", "LAYOUTERROR", "COPY_NOTIFY", "GETXATTR",
    "SETXATTR", "LISTXATTRS", "REMOVEXATTR", "READ_PLUS",
)

OPERATIONS_BY_VERSION = {
    "3": NFS3_OPERATIONS,
    "4": NFS4_OPERATIONS,
}


class InvalidPatternError(ValueError):
    pass


def _compile_patterns(patterns, kind):
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as e:
            raise InvalidPatternError("failed to compile %s mount pattern %r: %s" % (kind, pattern, e))
    return tuple(compiled)


class MountFilter(object):
    """Decides which mount points are reported.

    A mount is accepted when it matches one of the include patterns (or
    there are none) and none of the exclude patterns.  Patterns are searched
    anywhere in the mount path, anchor them to match the whole path.
    """

    def __init__(self, include_patterns=None, exclude_patterns=None, logger=None):
        log = logger or LOG
        include_patterns = list(include_patterns or [])
        exclude_patterns = list(exclude_patterns or [])
        self._include = _compile_patterns(include_patterns, "include")
        self._exclude = _compile_patterns(exclude_patterns, "exclude")

        if include_patterns:
            log.debug("Including these mount patterns: %s", include_patterns)
        else:
            log.debug("Including all mounts.")
        if exclude_patterns:
            log.debug("Excluding these mount patterns: %s", exclude_patterns)
        else:
            log.debug("Not excluding any mounts.")

    def accepts(self, mount):
        if self._include and not any(regex.search(mount) for regex in self._include):
            return False
        return not any(regex.search(mount) for regex in self._exclude)


class OperationTable(object):
    """Per NFS version set of operations reported in detail."""

    def __init__(self, include_operations=None, exclude_operations=None, logger=None):
        log = logger or LOG
        include = frozenset(include_operations or ())
        exclude = frozenset(exclude_operations or ())

        self._ops = {}
        for version, known in OPERATIONS_BY_VERSION.items():
            ops = [op for op in known if (not include or op in include) and op not in exclude]
            self._ops[version] = tuple(ops)
        self._lookup = dict((version, frozenset(ops)) for version, ops in self._ops.items())

        if include:
            log.debug("Including these operations: %s", sorted(include))
        else:
            log.debug("Including all operations.")
        if exclude:
            log.debug("Excluding these operations: %s", sorted(exclude))
        else:
            log.debug("Not excluding any operations.")

    def is_tracked(self, version, operation):
        ops = self._lookup.get(version)
        return ops is not None and operation in ops

    def operations(self, version):
        return self._ops.get(version, ())
