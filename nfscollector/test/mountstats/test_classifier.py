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

import unittest
from unittest import TestCase

from nfscollector.lib.mountstats.classifier import (
    BYTES_FIELDS, EVENTS_FIELDS, RPC_FIELDS, StatClassifier, category_key)
from nfscollector.lib.mountstats.convert import UINT64_MAX, convert_fields
from nfscollector.lib.mountstats.filters import OperationTable
from nfscollector.lib.mountstats.scanner import MountContext


def classify(line, fullstat=True, version="3", operations=None):
    classifier = StatClassifier(fullstat, operations or OperationTable())
    context = MountContext("/mnt", "srv:/export", version)
    tokens = line.split()
    return classifier.classify(context, tokens, convert_fields(tokens))


class TestCategoryKey(TestCase):

    def test_first_colon_only(self):
        self.assertEqual(category_key("READ:"), "READ")
        self.assertEqual(category_key("READ"), "READ")
        self.assertEqual(category_key("a:b:"), "ab:")


class TestBasic(TestCase):

    def test_read(self):
        metrics = classify("READ: 10 12 0 1280 409600 3 50 60 0", fullstat=False)
        self.assertEqual(len(metrics), 1)
        m = metrics[0]
        self.assertEqual(m.measurement, "nfsstat")
        self.assertEqual(m.tags, {"mountpoint": "/mnt", "serverexport": "srv:/export", "operation": "READ"})
        self.assertEqual(list(m.fields.items()), [
            ("ops", 10), ("retrans", 2), ("bytes", 410880),
            ("rtt", 50), ("exe", 60), ("rtt_per_op", 5.0)])

    def test_zero_ops(self):
        metrics = classify("WRITE: 0 0 0 0 0 0 0 0 0", fullstat=False)
        self.assertEqual(len(metrics), 1)
        self.assertEqual(metrics[0].fields["rtt_per_op"], 0.0)
        self.assertIsInstance(metrics[0].fields["rtt_per_op"], float)

    def test_short_line_is_skipped(self):
        self.assertEqual(classify("READ: 10 12 0 1280", fullstat=False), [])

    def test_retrans_wraps(self):
        metrics = classify("READ: 5 4 0 0 0 0 0 0 0", fullstat=False)
        self.assertEqual(metrics[0].fields["retrans"], UINT64_MAX)

    def test_other_operations_need_fullstat(self):
        self.assertEqual(classify("GETATTR: 5 5 0 0 0 2 1 0 0", fullstat=False), [])
        self.assertEqual(classify("events: " + " ".join(["1"] * 27), fullstat=False), [])

    def test_single_token(self):
        self.assertEqual(classify("READ:"), [])


class TestFullstat(TestCase):

    def test_events(self):
        metrics = classify("events: " + " ".join(str(i) for i in range(27)))
        self.assertEqual(len(metrics), 1)
        self.assertEqual(metrics[0].measurement, "nfs_events")
        self.assertEqual(list(metrics[0].fields.keys()), EVENTS_FIELDS)
        self.assertEqual(metrics[0].fields["pnfswrites"], 26)
        self.assertNotIn("operation", metrics[0].tags)

    def test_events_too_short(self):
        self.assertEqual(classify("events: " + " ".join(["1"] * 26)), [])

    def test_events_extra_fields(self):
        metrics = classify("events: " + " ".join(["1"] * 30))
        self.assertEqual(len(metrics[0].fields), 27)

    def test_bytes(self):
        metrics = classify("bytes: 1 2 3 4 5 6 7 8")
        self.assertEqual(metrics[0].measurement, "nfs_bytes")
        self.assertEqual(list(metrics[0].fields.items()), list(zip(BYTES_FIELDS, range(1, 9))))

    def test_bytes_too_short(self):
        self.assertEqual(classify("bytes: 1 2 3 4 5 6 7"), [])

    def test_xprt_tcp(self):
        metrics = classify("xprt: tcp 875 1 2 3 4 5 6 7 8 9 10 11")
        self.assertEqual(len(metrics), 1)
        self.assertEqual(metrics[0].measurement, "nfs_xprt_tcp")
        self.assertEqual(metrics[0].fields["bind_count"], 1)
        self.assertEqual(metrics[0].fields["backlogutil"], 9)
        self.assertEqual(len(metrics[0].fields), 9)

    def test_xprt_udp(self):
        metrics = classify("xprt: udp 832 1 6 6 0 6 0")
        self.assertEqual(metrics[0].measurement, "nfs_xprt_udp")
        self.assertEqual(list(metrics[0].fields.items()), [
            ("bind_count", 1), ("rpcsends", 6), ("rpcreceives", 6),
            ("badxids", 0), ("inflightsends", 6), ("backlogutil", 0)])

    def test_xprt_not_enough_fields(self):
        self.assertEqual(classify("xprt: udp 832 1 6 6 0 6"), [])
        self.assertEqual(classify("xprt: tcp 875 1 2 3 4 5 6 7 8"), [])

    def test_xprt_unknown_transport(self):
        self.assertEqual(classify("xprt: rdma 0 1 2 3 4 5 6 7 8 9 10"), [])

    def test_ops(self):
        metrics = classify("GETATTR 5 5 0 0 0 2 1 0 0")
        self.assertEqual(len(metrics), 1)
        m = metrics[0]
        self.assertEqual(m.measurement, "nfs_ops")
        self.assertEqual(m.tags["operation"], "GETATTR")
        self.assertEqual(list(m.fields.items()), list(zip(RPC_FIELDS, [5, 5, 0, 0, 0, 2, 1, 0, 0])))

    def test_ops_fewer_fields(self):
        metrics = classify("NULL: 0 0 0 0 0 0 0 0")
        self.assertEqual(list(metrics[0].fields.keys()), RPC_FIELDS[:8])

    def test_ops_too_many_fields(self):
        self.assertEqual(classify("GETATTR: 1 2 3 4 5 6 7 8 9 10"), [])

    def test_read_emits_basic_and_ops(self):
        metrics = classify("READ: 10 12 0 1280 409600 3 50 60 0")
        self.assertEqual([m.measurement for m in metrics], ["nfsstat", "nfs_ops"])
        # categories do not share fields
        self.assertNotIn("rtt_per_op", metrics[1].fields)
        self.assertEqual(len(metrics[1].fields), 9)
        self.assertIsNot(metrics[0].tags, metrics[1].tags)

    def test_ops_per_version(self):
        self.assertEqual(classify("SERVER_CAPS: 1 1 0 100 100 0 1 1 0", version="3"), [])
        self.assertEqual(len(classify("SERVER_CAPS: 1 1 0 100 100 0 1 1 0", version="4")), 1)
        self.assertEqual(classify("GETATTR: 1 1 0 100 100 0 1 1 0", version=""), [])

    def test_excluded_operation(self):
        ops = OperationTable(exclude_operations=["READ"])
        metrics = classify("READ: 10 12 0 1280 409600 3 50 60 0", operations=ops)
        self.assertEqual([m.measurement for m in metrics], ["nfsstat"])

    def test_unknown_key(self):
        self.assertEqual(classify("age: 1234"), [])
        self.assertEqual(classify("per-op statistics"), [])


if __name__ == '__main__':
    unittest.main()
