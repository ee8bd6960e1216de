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

"""Common utility functions shared for Python collectors"""

import re
import sys
from queue import Queue

_LIST_SEPARATORS = re.compile(r"[,\s]+")


def remove_invalid_characters(str):
    """removes characters unacceptable by opentsdb"""
    replaced = False
    lstr = list(str)
    for i, c in enumerate(lstr):
        if not (('a' <= c <= 'z') or ('A' <= c <= 'Z') or ('0' <= c <= '9') or c == '-' or c == '_' or
                c == '.' or c == '/' or c.isalpha()):
            lstr[i] = '_'
            replaced = True
    if replaced:
        return "".join(lstr)
    else:
        return str


def split_lines(value):
    """one entry per non-blank line of a multi-line config value"""
    if not value:
        return []
    return [line.strip() for line in value.splitlines() if line.strip()]


def split_names(value):
    """entries separated by commas and/or whitespace"""
    if not value:
        return []
    return [name for name in _LIST_SEPARATORS.split(value) if name]


class TestQueue(Queue):
    def nput(self, value):
        print(value)


class TestLogger(object):
    # below are convenient methods available to all collectors
    def debug(self, msg, *args, **kwargs):
        pass

    def info(self, msg, *args, **kwargs):
        sys.stdout.write("INFO: " + msg % args + "\n")

    def error(self, msg, *args, **kwargs):
        sys.stderr.write("ERROR: " + msg % args + "\n")

    def warning(self, msg, *args, **kwargs):
        sys.stdout.write("WARN: " + msg % args + "\n")

    def exception(self, msg, *args, **kwargs):
        sys.stderr.write("ERROR: " + msg % args + "\n")
