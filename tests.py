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

import io
import json
import logging
import logging.handlers
import os
import shutil
import tempfile
import unittest
from optparse import Values
from unittest import mock

import requests

import common_utils
import runner
from nfscollector.builtin.nfsclient import NfsClient
from nfscollector.test.mountstats import sample


def sender_options(**overrides):
    options = dict(hosts=[("localhost", 4242)], http_username=False, http_password=False,
                   ssl=False, maxtags=8, dryrun=False)
    options.update(overrides)
    return Values(options)


class FailingCollector(object):
    def __call__(self):
        raise IOError("no such file")

    def cleanup(self):
        pass


class CommandLineTests(unittest.TestCase):

    def test_defaults(self):
        options, args = runner.parse_cmdline(["runner.py"])
        self.assertEqual(options.port, 4242)
        self.assertEqual(options.update_interval, 15)
        self.assertFalse(options.dryrun)
        self.assertTrue(os.path.isdir(os.path.join(options.cdir, "conf")))

    def test_tags(self):
        self.assertEqual(runner.parse_tags(["host=a", "dc=b"]), {"host": "a", "dc": "b"})
        with self.assertRaises(ValueError):
            runner.parse_tags(["host"])
        with self.assertRaises(ValueError):
            runner.parse_tags(["host=a", "host=b"])

    def test_splithost(self):
        self.assertEqual(runner.splithost("tsd1:4243"), ("tsd1", 4243))
        self.assertEqual(runner.splithost("tsd1"), ("tsd1", 4242))
        self.assertEqual(runner.splithost("[::1]:4243"), ("::1", 4243))


class LoggingTests(unittest.TestCase):

    def test_stream_handler(self):
        logger = logging.getLogger("nfscollector-test-stream")
        handler = common_utils.setup_logging(logger, None, verbose=True)
        self.addCleanup(logger.removeHandler, handler)
        self.assertEqual(logger.level, logging.DEBUG)
        self.assertIsInstance(handler, logging.StreamHandler)

    def test_rotating_handler(self):
        tmpdir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, tmpdir)
        logger = logging.getLogger("nfscollector-test-rotate")
        handler = common_utils.setup_logging(logger, os.path.join(tmpdir, "c.log"), 1024, 1)
        self.addCleanup(handler.close)
        self.addCleanup(logger.removeHandler, handler)
        self.assertEqual(logger.level, logging.INFO)
        self.assertIsInstance(handler, logging.handlers.RotatingFileHandler)


class CollectorConfTests(unittest.TestCase):

    def setUp(self):
        self.cdir = tempfile.mkdtemp()
        os.mkdir(os.path.join(self.cdir, "conf"))
        self.options = Values({"cdir": self.cdir})

    def tearDown(self):
        shutil.rmtree(self.cdir)

    def write_conf(self, name, text):
        path = os.path.join(self.cdir, "conf", name)
        with open(path, "w") as f:
            f.write(text)
        return path

    def test_added_and_removed(self):
        self.write_conf("nfsclient.conf", "[base]\nenabled = True\ninclude_mounts = ^/mnt/%\n")
        confs = {}
        changed, deleted = runner.reload_collector_confs(confs, self.options)
        self.assertEqual(list(changed), ["nfsclient.conf"])
        self.assertEqual(deleted, {})
        conf = changed["nfsclient.conf"][1]
        self.assertTrue(conf.getboolean("base", "enabled"))
        self.assertEqual(conf.get("base", "include_mounts"), "^/mnt/%")
        self.assertEqual(conf.getint("base", "interval"), 15)

        changed, deleted = runner.reload_collector_confs(confs, self.options)
        self.assertEqual(changed, {})

        os.remove(os.path.join(self.cdir, "conf", "nfsclient.conf"))
        changed, deleted = runner.reload_collector_confs(confs, self.options)
        self.assertEqual(list(deleted), ["nfsclient.conf"])
        self.assertEqual(confs, {})

    def test_load_collector_module(self):
        self.assertIs(runner.load_collector_module("nfsclient"), NfsClient)
        self.assertIs(runner.load_collector_module("nfsclient", "NfsClient"), NfsClient)

    def test_bad_pattern_is_skipped(self):
        self.write_conf("nfsclient.conf", "[base]\nenabled = True\ncollectorclass = NfsClient\n"
                                          "include_mounts = (\n")
        changed, _ = runner.reload_collector_confs({}, self.options)
        collectors = {}
        runner.load_collectors(changed, collectors, runner.NonBlockingQueue(10))
        self.assertEqual(collectors, {})

    def test_load_and_close(self):
        tmp = self.write_conf("mountstats.txt", sample.MOUNTSTATS)
        self.write_conf("nfsclient.conf", "[base]\nenabled = True\ncollectorclass = NfsClient\ninterval = 60\n")
        changed, _ = runner.reload_collector_confs({}, self.options)
        collectors = {}
        readq = runner.NonBlockingQueue(100)
        with mock.patch.dict(os.environ, {"MOUNT_PROC": tmp}):
            runner.load_collectors(changed, collectors, readq)
        self.assertIn("nfsclient", collectors)
        runner.close_collectors({"nfsclient.conf": None}, collectors)
        self.assertEqual(collectors, {})


class CollectorThreadTests(unittest.TestCase):

    def test_failed_cycle_is_logged(self):
        thread = runner.CollectorThread("nfsclient", FailingCollector(), 10)
        with mock.patch.object(runner.LOG, "exception") as log_exception:
            self.assertFalse(thread.run_once())
        log_exception.assert_called_once_with('failed to execute collector %s', 'nfsclient')

    def test_successful_cycle(self):
        readq = runner.NonBlockingQueue(100)
        tmpdir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, tmpdir)
        path = os.path.join(tmpdir, "mountstats")
        with open(path, "w") as f:
            f.write(sample.MOUNTSTATS)
        with mock.patch.dict(os.environ, {"MOUNT_PROC": path}):
            collector = NfsClient(None, runner.LOG, readq)
        thread = runner.CollectorThread("nfsclient", collector, 10)
        self.assertTrue(thread.run_once())
        self.assertEqual(readq.qsize(), 18)


class NonBlockingQueueTests(unittest.TestCase):

    def test_drop_when_full(self):
        q = runner.NonBlockingQueue(1)
        dropped = runner.NonBlockingQueue.dropped
        self.assertTrue(q.nput("a 1 1"))
        self.assertFalse(q.nput("b 1 1"))
        self.assertEqual(runner.NonBlockingQueue.dropped, dropped + 1)


class SenderTests(unittest.TestCase):

    def test_process(self):
        sender = runner.Sender("", runner.NonBlockingQueue(10), sender_options(), {"host": "h1"})
        entry = sender.process("nfsstat.ops 1464196613 10 mountpoint=/mnt/vol0 operation=READ")
        self.assertEqual(entry, {
            "metric": "nfsstat.ops",
            "timestamp": 1464196613,
            "value": 10.0,
            "tags": {"host": "h1", "mountpoint": "/mnt/vol0", "operation": "READ"},
        })

    def test_process_without_tags(self):
        sender = runner.Sender("", runner.NonBlockingQueue(10), sender_options(), {})
        self.assertEqual(sender.process("m 1 2.5")["tags"], {})

    def test_max_tags(self):
        sender = runner.Sender("", runner.NonBlockingQueue(10), sender_options(maxtags=2), {"host": "h1"})
        entry = sender.process("nfs_ops.ops 1 1 mountpoint=/mnt operation=READ serverexport=s")
        self.assertEqual(entry["tags"], {"host": "h1", "mountpoint": "/mnt"})

    def test_drain(self):
        readq = runner.NonBlockingQueue(10)
        readq.nput("a 1 1")
        readq.nput("b 1 2")
        sender = runner.Sender("", readq, sender_options(), {})
        metrics, byte_count = sender.drain(timeout=0.01)
        self.assertEqual([m["metric"] for m in metrics], ["a", "b"])
        self.assertEqual(byte_count, 10)
        self.assertEqual(sender.drain(timeout=0.01), ([], 0))

    def test_dry_run(self):
        sender = runner.Sender("", runner.NonBlockingQueue(10), sender_options(dryrun=True), {})
        metrics = [sender.process("a 1 1")]
        with mock.patch("sys.stdout", new_callable=io.StringIO) as out, \
                mock.patch.object(runner.requests, "post") as post:
            sender.send_data_via_http(metrics)
        self.assertFalse(post.called)
        self.assertIn('"metric": "a"', out.getvalue())

    def test_send(self):
        sender = runner.Sender("secret", runner.NonBlockingQueue(10), sender_options(
            http_username="u", http_password="p"), {})
        metrics = [sender.process("a 1 1 k=v")]
        with mock.patch.object(runner.requests, "post") as post:
            post.return_value.status_code = 204
            sender.send_data_via_http(metrics)
        args, kwargs = post.call_args
        self.assertEqual(args[0], "http://localhost:4242/api/put")
        self.assertEqual(kwargs["params"], {"details": "", "token": "secret"})
        self.assertEqual(kwargs["auth"], ("u", "p"))
        self.assertEqual(json.loads(kwargs["data"]), metrics)

    def test_connection_error_blacklists(self):
        sender = runner.Sender("", runner.NonBlockingQueue(10), sender_options(), {})
        with mock.patch.object(runner.requests, "post", side_effect=requests.exceptions.ConnectionError()):
            with self.assertRaises(requests.exceptions.ConnectionError):
                sender.send_data_via_http([sender.process("a 1 1")])
        self.assertIn(("localhost", 4242), sender.blacklisted_hosts)

    def test_pick_connection_retries_blacklisted(self):
        sender = runner.Sender("", runner.NonBlockingQueue(10), sender_options(), {})
        sender.pick_connection()
        sender.blacklist_connection()
        sender.pick_connection()
        self.assertEqual((sender.host, sender.port), ("localhost", 4242))
        self.assertEqual(sender.blacklisted_hosts, set())


if __name__ == '__main__':
    unittest.main()
