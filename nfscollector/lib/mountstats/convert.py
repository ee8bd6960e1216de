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
"""Conversion of mountstats counter fields to unsigned 64-bit integers.

The kernel prints every counter as an unsigned decimal.  A field that is
not a number at all (a transport name, a ratio, an option string) is
reported as 0 and the rest of the line is still used.  A number that does
not fit in 64 bits is different: it means the counter layout is not what
we expect, so the whole line is refused and the error is raised.
"""

import re

UINT64_MAX = 2 ** 64 - 1

_LEADING_DIGITS = re.compile(r"^[0-9]+")


class FieldConversionError(ValueError):
    pass


class FieldSyntaxError(FieldConversionError):
    """The token is not an unsigned decimal number."""

    def __init__(self, token):
        super(FieldSyntaxError, self).__init__("invalid counter value %r" % (token,))
        self.token = token


class FieldOverflowError(FieldConversionError):
    """The token is a number larger than an unsigned 64-bit counter."""

    def __init__(self, token, line=None):
        if line is None:
            msg = "counter out of range: %r" % (token,)
        else:
            msg = "counter out of range: line:[%s] raw:[%s]" % (" ".join(line), token)
        super(FieldOverflowError, self).__init__(msg)
        self.token = token
        self.line = line


def parse_uint64(token, line=None):
    m = _LEADING_DIGITS.match(token)
    if m is None:
        raise FieldSyntaxError(token)
    # digits read before a bad character still count towards the range check
    value = int(m.group(0))
    if value > UINT64_MAX:
        raise FieldOverflowError(token, line)
    if m.end() != len(token):
        raise FieldSyntaxError(token)
    return value


def convert_fields(tokens):
    """Converts tokens[1:] to integers, tokens[0] being the category key.

    Returns an empty list for lines with fewer than two tokens.  Raises
    FieldOverflowError if any field overflows; other bad fields become 0.
    """
    if len(tokens) < 2:
        return []

    values = []
    for token in tokens[1:]:
        try:
            values.append(parse_uint64(token, tokens))
        except FieldSyntaxError:
            values.append(0)
    return values


def wrap_uint64(value):
    """Keeps arithmetic on counters within unsigned 64-bit range."""
    return value & UINT64_MAX
