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

import configparser
import os
import shutil
import tempfile
import unittest
from unittest import TestCase, mock

from nfscollector.builtin import nfsclient
from nfscollector.lib.mountstats.convert import FieldOverflowError
from nfscollector.lib.mountstats.filters import InvalidPatternError
from nfscollector.lib import utils
from nfscollector.test.mountstats import sample


class ListQueue(object):
    def __init__(self):
        self.lines = []

    def nput(self, value):
        self.lines.append(value)
        return True


def make_config(**options):
    config = configparser.ConfigParser(interpolation=None)
    config.read_dict({'base': options})
    return config


class TestNfsClient(TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.path = os.path.join(self.tmpdir, "mountstats")
        self.write(sample.MOUNTSTATS)
        patcher = mock.patch.dict(os.environ, {nfsclient.MOUNTSTATS_PATH_ENV: self.path})
        patcher.start()
        self.addCleanup(patcher.stop)
        self.readq = ListQueue()

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def write(self, text):
        with open(self.path, "w") as f:
            f.write(text)

    def collector(self, **options):
        return nfsclient.NfsClient(make_config(**options), utils.TestLogger(), self.readq)

    def test_mountstats_path(self):
        self.assertEqual(nfsclient.get_mountstats_path(), self.path)
        with mock.patch.dict(os.environ, {nfsclient.MOUNTSTATS_PATH_ENV: ""}):
            self.assertEqual(nfsclient.get_mountstats_path(), "/proc/self/mountstats")

    def test_basic_lines(self):
        with mock.patch("time.time", return_value=1464196613):
            self.collector()()
        self.assertIn("nfsstat.ops 1464196613 10 mountpoint=/mnt/vol0 operation=READ "
                      "serverexport=fls1_/vol/vol0", self.readq.lines)
        self.assertIn("nfsstat.rtt_per_op 1464196613 5.0 mountpoint=/mnt/vol0 operation=READ "
                      "serverexport=fls1_/vol/vol0", self.readq.lines)
        # three READ/WRITE lines, six fields each
        self.assertEqual(len(self.readq.lines), 18)

    def test_fullstat(self):
        self.collector(fullstat="true")()
        names = set(line.split()[0].split(".")[0] for line in self.readq.lines)
        self.assertEqual(names, set(["nfsstat", "nfs_events", "nfs_bytes", "nfs_xprt_tcp",
                                     "nfs_xprt_udp", "nfs_ops"]))

    def test_config_lists(self):
        self.collector(fullstat="true",
                       include_mounts="\n^/mnt/\n^/home$",
                       exclude_mounts="\n^/home",
                       include_operations="READ, GETATTR",
                       exclude_operations="GETATTR")()
        self.assertTrue(self.readq.lines)
        for line in self.readq.lines:
            self.assertIn("mountpoint=/mnt/vol0", line)
            if line.startswith("nfs_ops."):
                self.assertIn("operation=READ", line)

    def test_metric_prefix(self):
        self.collector(metric_prefix="proc.")()
        self.assertTrue(all(line.startswith("proc.nfsstat.") for line in self.readq.lines))

    def test_invalid_pattern_fails_at_init(self):
        with self.assertRaises(InvalidPatternError):
            self.collector(include_mounts="(")

    def test_missing_file(self):
        os.remove(self.path)
        c = self.collector()
        with self.assertRaises(IOError):
            c()
        self.assertEqual(self.readq.lines, [])

    def test_overflow_fails_cycle(self):
        self.write("device a:/x mounted on /x with fstype nfs statvers=1.1\n"
                   "READ: 99999999999999999999 1 0 0 0 0 0 0 0\n")
        with self.assertRaises(FieldOverflowError):
            self.collector()()

    def test_mount_path_not_utf8(self):
        with open(self.path, "wb") as f:
            f.write(b"device srv:/caf\xe9 mounted on /mnt/caf\xe9 with fstype nfs statvers=1.1\n"
                    b"READ: 1 1 0 0 0 0 0 0 0\n"
                    b"device srv:/ok mounted on /mnt/ok with fstype nfs statvers=1.1\n"
                    b"READ: 2 2 0 0 0 0 0 0 0\n")
        with mock.patch("time.time", return_value=1):
            self.collector()()
        self.assertIn("nfsstat.ops 1 2 mountpoint=/mnt/ok operation=READ serverexport=srv_/ok",
                      self.readq.lines)
        self.assertIn("nfsstat.ops 1 1 mountpoint=/mnt/caf_ operation=READ serverexport=srv_/caf_",
                      self.readq.lines)
        self.assertEqual(len(self.readq.lines), 12)

    def test_next_cycle_reads_again(self):
        c = self.collector()
        c()
        first = list(self.readq.lines)
        self.readq.lines = []
        self.write("")
        c()
        self.assertEqual(self.readq.lines, [])
        self.write(sample.MOUNTSTATS)
        c()
        self.assertEqual(len(self.readq.lines), len(first))


if __name__ == '__main__':
    unittest.main()
