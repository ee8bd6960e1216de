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

from collections import OrderedDict

from nfscollector.lib import utils


class Metric(object):
    def __init__(self, measurement, tags, fields):
        self.measurement = measurement
        self.tags = dict(tags)
        self.fields = OrderedDict(fields)

    def get_metric_lines(self, ts, prefix=""):
        """ return in OpenTSDB format, one line per field
        <prefix><measurement>.<field> <time_epoch> <value> [key=val] [key1=val1]...
        """
        dims = " ".join(sorted("%s=%s" % (k, utils.remove_invalid_characters(v))
                               for k, v in self.tags.items() if v))
        lines = []
        for field, value in self.fields.items():
            m = "%s%s.%s %d %s" % (prefix, self.measurement, field, ts, value)
            lines.append("%s %s" % (m, dims) if dims else m)
        return lines

    def __eq__(self, other):
        if not isinstance(other, Metric):
            return NotImplemented
        return (self.measurement == other.measurement and self.tags == other.tags
                and list(self.fields.items()) == list(other.fields.items()))

    def __repr__(self):
        return "Metric(%r, %r, %r)" % (self.measurement, self.tags, dict(self.fields))
