#!/usr/bin/env python

import os
import signal
import logging
import sys
import re
import socket
import time
import configparser
import importlib
import json
import random
import threading
from optparse import OptionParser
from queue import Queue
from queue import Full
from queue import Empty

import requests

import common_utils
import nfscollector

# global variables._
COLLECTORS = {}
SENDER = None
DEFAULT_LOG = '/var/log/nfscollector.log'
LOG = logging.getLogger('runner')
DEFAULT_PORT = 4242
MAX_UNCAUGHT_EXCEPTIONS = 100
MAX_SENDQ_SIZE = 20000      # this should match tsd.http.request.max_chunk, usually 1/3. json adds considerable overhead
MAX_READQ_SIZE = 100000
HTTP_TIMEOUT = 30  # seconds

# config constants
SECTION_BASE = 'base'
CONFIG_ENABLED = 'enabled'
CONFIG_COLLECTOR_CLASS = 'collectorclass'
CONFIG_INTERVAL = 'interval'

# metric entry constant
METRIC_NAME = 'metric'
METRIC_TIMESTAMP = 'timestamp'
METRIC_VALUE = 'value'
METRIC_TAGS = 'tags'

BUILTIN_PACKAGE = 'nfscollector.builtin'


def main(argv=None):
    if argv is None:
        argv = sys.argv
    try:
        options, args = parse_cmdline(argv)
    except SystemExit:
        raise
    except Exception:
        sys.stderr.write("Unexpected error: %s\n" % sys.exc_info()[0])
        return 1

    common_utils.setup_logging(LOG, options.logfile, options.max_bytes or None, options.backup_count or None,
                               options.verbose)

    LOG.info('agent starting..., %s', argv)

    if options.pidfile:
        write_pid(options.pidfile)

    # validate everything
    try:
        tags = parse_tags(options.tags)
    except ValueError as e:
        LOG.fatal('%s', e)
        return 1

    if 'host' not in tags:
        tags['host'] = socket.gethostname()
        LOG.warning('Tag "host" not specified, defaulting to %s.', tags['host'])

    options.cdir = os.path.realpath(options.cdir)
    if not os.path.isdir(options.cdir):
        LOG.fatal('No such directory: %s', options.cdir)
        return 1

    # gracefully handle death for normal termination paths and abnormal
    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, shutdown_signal)

    # prepare list of (host, port) of TSDs given on CLI
    if not options.hosts:
        options.hosts = [(options.host, options.port)]
    else:
        options.hosts = [splithost(host_str) for host_str in options.hosts.split(",")]
        if options.host != "localhost" or options.port != DEFAULT_PORT:
            options.hosts.append((options.host, options.port))

    runner_config = load_runner_conf()
    token = runner_config.get(SECTION_BASE, 'token', fallback='')

    readq = NonBlockingQueue(MAX_READQ_SIZE)
    global SENDER
    SENDER = Sender(token, readq, options, tags)
    SENDER.start()

    LOG.info('agent finish initializing, enter main loop.')
    main_loop(readq, options, {}, COLLECTORS)


def parse_tags(tag_strings):
    tags = {}
    for tag in tag_strings:
        if re.match(r'^[-_.a-z0-9]+=\S+$', tag, re.IGNORECASE) is None:
            raise ValueError('Tag string "%s" is invalid.' % tag)
        k, v = tag.split('=', 1)
        if k in tags:
            raise ValueError('Tag "%s" already declared.' % k)
        tags[k] = v
    return tags


def splithost(hostport):
    if ":" in hostport:
        # Check if we have an IPv6 address.
        if hostport[0] == "[" and "]:" in hostport:
            host, port = hostport.split("]:")
            host = host[1:]
        else:
            host, port = hostport.split(":")
        return host, int(port)
    return hostport, DEFAULT_PORT


def main_loop(readq, options, configs, collectors):
    loop_interval = options.update_interval
    while True:
        start = time.time()
        try:
            changed_configs, deleted_configs = reload_collector_confs(configs, options)
            close_collectors(deleted_configs, collectors)
            load_collectors(changed_configs, collectors, readq)
        except Exception:
            LOG.exception('failed collector update loop.')

        end = time.time()
        sleep_reasonably(loop_interval, start, end)


def load_runner_conf():
    runner_config_path = os.path.splitext(__file__)[0] + ".conf"
    runner_config = configparser.ConfigParser(interpolation=None)
    runner_config.read(runner_config_path)
    return runner_config


def read_collector_conf(path):
    # no interpolation, mount patterns may contain '%'
    config = configparser.ConfigParser(default_config(), interpolation=None)
    config.read(path)
    return config


def reload_collector_confs(collector_confs, options):
    """
    load and reload collector conf file
    Args:
        collector_confs: filename -> (path, config, mtime) of the confs loaded so far, updated in place
        options: parsed command line, options.cdir holds the conf directory

    Returns: changed collector confs and deleted collector confs

    """
    confdir = os.path.join(options.cdir, 'conf')
    current_collector_confs = set(list_collector_confs(confdir))
    changed_collector_confs = {}
    deleted_collector_confs = {}

    # Reload any module that has changed.
    for filename, (path, conf, timestamp) in list(collector_confs.items()):
        if filename not in current_collector_confs:  # Module was removed.
            continue
        mtime = os.path.getmtime(path)
        if mtime > timestamp:
            LOG.info('reloading %s, file has changed', path)
            config = read_collector_conf(path)
            collector_confs[filename] = (path, config, mtime)
            changed_collector_confs[filename] = (path, config, mtime)

    # Remove any module that has been removed.
    for filename in set(collector_confs).difference(current_collector_confs):
        LOG.info('%s has been removed, shutting its collector down', filename)
        deleted_collector_confs[filename] = collector_confs[filename]
        del collector_confs[filename]

    # Check for any modules that may have been added.
    for filename in current_collector_confs:
        path = os.path.join(confdir, filename)
        if filename not in collector_confs:
            LOG.info('adding conf %s', path)
            config = read_collector_conf(path)
            mtime = os.path.getmtime(path)
            collector_confs[filename] = (path, config, mtime)
            changed_collector_confs[filename] = (path, config, mtime)
    return changed_collector_confs, deleted_collector_confs


def default_config():
    return {
        CONFIG_ENABLED: 'False',
        CONFIG_INTERVAL: '15',
        CONFIG_COLLECTOR_CLASS: '',
    }


def list_collector_confs(confdir):
    if not os.path.isdir(confdir):
        LOG.warning('collector conf directory %s is not a directory', confdir)
        return iter(())  # Empty iterator.
    return (name for name in os.listdir(confdir)
            if (name.endswith('.conf') and os.path.isfile(os.path.join(confdir, name))))


def close_collectors(configs, collectors):
    for config_filename in configs.keys():
        name = os.path.splitext(config_filename)[0]
        if name in collectors:
            close_single_collector(collectors, name)


def close_single_collector(collectors, name):
    try:
        LOG.info('shutting down collector %s', name)
        collectors[name].shutdown()
        del collectors[name]
    except Exception:
        LOG.exception('failed to shutdown collector %s', name)


def load_collectors(configs, collectors, readq):
    for config_filename, (path, conf, timestamp) in configs.items():
        name = os.path.splitext(config_filename)[0]
        try:
            if conf.getboolean(SECTION_BASE, CONFIG_ENABLED):
                collector_class_name = conf.get(SECTION_BASE, CONFIG_COLLECTOR_CLASS) or None
                collector_class = load_collector_module(name, collector_class_name)
                collector_instance = collector_class(conf, LOG, readq)
                interval = conf.getint(SECTION_BASE, CONFIG_INTERVAL)

                # shutdown and remove old collector
                if name in collectors:
                    close_single_collector(collectors, name)
                collectors[name] = CollectorExec(name, collector_instance, interval)
                LOG.info('loaded collector %s from %s', name, path)
            elif name in collectors:
                LOG.info("%s is disabled, shut down and remove it", name)
                close_single_collector(collectors, name)
        except Exception:
            LOG.exception('failed to load collector %s, skipped.', name)


# caller to handle exception
def load_collector_module(module_name, collector_class_name=None):
    mod = importlib.import_module('%s.%s' % (BUILTIN_PACKAGE, module_name))
    if collector_class_name is None:
        collector_class_name = module_name.title().replace('_', '').replace('-', '')
    return getattr(mod, collector_class_name)


def parse_cmdline(argv):
    defaults = get_defaults()

    # get arguments
    parser = OptionParser(description='Collects NFS client statistics '
                                      'and reports them to OpenTSDB.')
    parser.add_option('-c', '--collector-dir', dest='cdir', metavar='DIR',
                      default=defaults['cdir'],
                      help='Directory holding the conf/ directory of the collectors.')
    parser.add_option('-d', '--dry-run', dest='dryrun', action='store_true',
                      default=defaults['dryrun'],
                      help='Don\'t actually send anything to the TSD, '
                           'just print the datapoints.')
    parser.add_option('-H', '--host', dest='host',
                      metavar='HOST',
                      default=defaults['host'],
                      help='Hostname to use to connect to the TSD.')
    parser.add_option('-L', '--hosts-list', dest='hosts',
                      metavar='HOSTS',
                      default=defaults['hosts'],
                      help='List of host:port to connect to tsd\'s (comma separated).')
    parser.add_option('-p', '--port', dest='port', type='int',
                      default=defaults['port'], metavar='PORT',
                      help='Port to connect to the TSD instance on. '
                           'default=%default')
    parser.add_option('-v', dest='verbose', action='store_true',
                      default=defaults['verbose'],
                      help='Verbose mode (log debug messages).')
    parser.add_option('-t', '--tag', dest='tags', action='append',
                      default=defaults['tags'], metavar='TAG',
                      help='Tags to append to all timeseries we send, '
                           'e.g.: -t TAG=VALUE -t TAG2=VALUE')
    parser.add_option('-P', '--pidfile', dest='pidfile',
                      default=defaults['pidfile'],
                      metavar='FILE', help='Write our pidfile')
    parser.add_option('--max-bytes', dest='max_bytes', type='int',
                      default=defaults['max_bytes'],
                      help='Maximum bytes per a logfile.')
    parser.add_option('--backup-count', dest='backup_count', type='int',
                      default=defaults['backup_count'], help='Maximum number of logfiles to backup.')
    parser.add_option('--logfile', dest='logfile', type='str',
                      default=defaults['logfile'],
                      help='Filename where logs are written to.')
    parser.add_option('--max-tags', dest='maxtags', type=int, default=defaults['maxtags'],
                      help='The maximum number of tags to send to our TSD Instances')
    parser.add_option('--http-username', dest='http_username', default=defaults['http_username'],
                      help='Username to use for HTTP Basic Auth when sending the data via HTTP')
    parser.add_option('--http-password', dest='http_password', default=defaults['http_password'],
                      help='Password to use for HTTP Basic Auth when sending the data via HTTP')
    parser.add_option('--ssl', dest='ssl', action='store_true', default=defaults['ssl'],
                      help='Enable SSL')
    parser.add_option('--update-interval', dest='update_interval', type='int', default=defaults['update_interval'],
                      help='interval the update of collector is picked up')
    (options, args) = parser.parse_args(args=argv[1:])
    if options.update_interval <= 0:
        parser.error('--update-interval must be at least 1 second')
    if options.max_bytes and not options.backup_count:
        options.backup_count = 1
    return options, args


def get_defaults():
    default_cdir = os.path.dirname(os.path.realpath(nfscollector.__file__))

    defaults = {
        'verbose': False,
        'dryrun': False,
        'maxtags': 8,
        'max_bytes': 0,
        'http_password': False,
        'http_username': False,
        'port': DEFAULT_PORT,
        'pidfile': None,
        'tags': [],
        'host': 'localhost',
        'backup_count': 0,
        'logfile': DEFAULT_LOG,
        'cdir': default_cdir,
        'ssl': False,
        'hosts': False,
        'update_interval': 15
    }

    return defaults


def write_pid(pidfile):
    """Write our pid to a pidfile."""
    with open(pidfile, "w") as f:
        f.write(str(os.getpid()))


def shutdown():
    LOG.info('exiting...')
    if SENDER is not None:
        SENDER.shutdown()
    for name, collector in COLLECTORS.items():
        try:
            collector.signal_shutdown()
        except Exception:
            LOG.exception('failed to signal shutdown collector %s. skip.', name)

    for name, collector in COLLECTORS.items():
        try:
            collector.wait_shutdown()
        except Exception:
            LOG.exception('failed to wait shutdown collector %s. skip.', name)

    LOG.info('total %d collectors exited', len(COLLECTORS))
    sys.exit(1)


# noinspection PyUnusedLocal
def shutdown_signal(signum, frame):
    LOG.warning("shutting down, got signal %d", signum)
    shutdown()


def sleep_reasonably(interval, start, end):
    sleepsec = interval - (end - start) if interval > (end - start) else 0
    time.sleep(sleepsec)


class CollectorExec(object):
    def __init__(self, name, collector_instance, interval):
        self._validate(name, 'name')
        self._validate(collector_instance, 'collector_instance')
        self._validate(interval, 'interval')

        self._name = name
        self._collector_instance = collector_instance
        self._interval = interval
        self._thread = CollectorThread(name, collector_instance, interval)
        self._thread.start()

    def shutdown(self, wait=True):
        LOG.info('starting to shut down %s', self._name)
        self._collector_instance.signal_exit()
        self._thread.exit = True
        if wait:
            self.wait_shutdown()

    def signal_shutdown(self):
        """ signal shutdown without waiting for the thread to exit, should used in pair with wait_shutdown"""
        self.shutdown(False)

    def wait_shutdown(self):
        """ used in pair with signal_shutdown to wait for the thread to exit """
        self._thread.join()
        LOG.info('finish shutting down %s', self._name)

    def _validate(self, val, name):
        if not val:
            raise ValueError('%s is not set' % name)


class CollectorThread(threading.Thread):
    def __init__(self, name, collector_instance, interval):
        super(CollectorThread, self).__init__()
        self.name = name
        self.collector_instance = collector_instance
        self.interval = interval
        self.exit = False
        self.daemon = True

    def run(self):
        LOG.info('started collector thread: %s', self.name)
        while not self.exit:
            start = time.time()
            self.run_once()
            self.sleep_responsively(start)
        self.collector_instance.cleanup()

    def run_once(self):
        """one collection, a failed one is logged and retried on the next interval"""
        try:
            LOG.debug("start one collection for collector %s", self.name)
            self.collector_instance()
            LOG.debug("finish one collection for collector %s", self.name)
            return True
        except Exception:
            LOG.exception('failed to execute collector %s', self.name)
            return False

    def sleep_responsively(self, start):
        max_sleepsec = 5
        end = time.time()
        sleepsec = self.interval - (end - start) if self.interval > (end - start) else 0
        while not self.exit and sleepsec > 0:
            sleepsec = sleepsec if sleepsec < max_sleepsec else max_sleepsec
            time.sleep(sleepsec)
            end = time.time()
            sleepsec = self.interval - (end - start) if self.interval > (end - start) else 0


class NonBlockingQueue(Queue):
    dropped = 0

    def nput(self, value):
        """A nonblocking put, that simply logs and discards the value when the
           queue is full, and returns false if we dropped."""
        try:
            self.put(value, False)
        except Full:
            LOG.error("DROPPED LINE: %s", value)
            NonBlockingQueue.dropped += 1
            return False
        return True


# noinspection PyDictCreation
class Sender(threading.Thread):
    def __init__(self, token, readq, options, tags):
        super(Sender, self).__init__()
        self.token = token
        self.exit = False
        self.daemon = True
        self.readq = readq
        self.hosts = list(options.hosts)
        self.http_username = options.http_username
        self.http_password = options.http_password
        self.ssl = options.ssl
        self.tags = tags
        self.maxtags = options.maxtags
        self.dryrun = options.dryrun
        self.current_tsd = -1
        self.host = None
        self.port = None
        self.blacklisted_hosts = set()
        random.shuffle(self.hosts)

    def shutdown(self):
        LOG.info("signaled sender thread shutdown.")
        self.exit = True

    def run(self):
        """Main loop.  A simple scheduler.  Loop waiting for 5
           seconds for data on the queue.  If there's no data, just
           loop.  If there is data, grab all of the pending data and
           send it.  A little better than sending every line as its
           own request."""

        errors = 0  # How many uncaught exceptions in a row we got.
        LOG.info('sender thread started')
        while not self.exit:
            try:
                metrics, byte_count = self.drain()
                if not metrics:
                    continue
                self.send_data_via_http(metrics)
                LOG.info('send %d bytes, readq size %d', byte_count, self.readq.qsize())
                errors = 0  # We managed to do a successful iteration.
            except (ArithmeticError, EOFError, EnvironmentError, LookupError,
                    ValueError):
                errors += 1
                if errors > MAX_UNCAUGHT_EXCEPTIONS:
                    LOG.error("sender thread exceeds the max number of errors (%d). exit", MAX_UNCAUGHT_EXCEPTIONS)
                    self.exit = True
                    raise
                LOG.exception('exception in Sender, ignoring')
                time.sleep(1)
        LOG.info('sender thread exited')

    def drain(self, timeout=5):
        metrics = []
        byte_count = 0
        try:
            line = self.readq.get(True, timeout)
        except Empty:
            return metrics, byte_count
        metrics.append(self.process(line))
        byte_count += len(line)
        while byte_count < MAX_SENDQ_SIZE:
            try:
                line = self.readq.get(False)
            except Empty:
                break
            metrics.append(self.process(line))
            byte_count += len(line)
        return metrics, byte_count

    def process(self, line):
        parts = line.split(None, 3)
        # not all metrics have metric-specific tags
        if len(parts) == 4:
            (metric, timestamp, value, raw_tags) = parts
        else:
            (metric, timestamp, value) = parts
            raw_tags = ""
        # process the tags
        metric_tags = {}
        for tag in raw_tags.strip().split():
            (tag_key, tag_value) = tag.split("=", 1)
            metric_tags[tag_key] = tag_value
        metric_entry = {}
        metric_entry[METRIC_NAME] = metric
        metric_entry[METRIC_TIMESTAMP] = int(timestamp)
        metric_entry[METRIC_VALUE] = float(value)
        metric_entry[METRIC_TAGS] = dict(self.tags)
        if len(metric_tags) + len(metric_entry[METRIC_TAGS]) > self.maxtags:
            metric_tags_orig = set(metric_tags)
            keep = max(self.maxtags - len(metric_entry[METRIC_TAGS]), 0)
            subset_metric_keys = frozenset(sorted(metric_tags)[:keep])
            metric_tags = dict((k, v) for k, v in metric_tags.items() if k in subset_metric_keys)
            LOG.error("Exceeding maximum permitted metric tags - removing %s for metric %s",
                      str(metric_tags_orig - set(metric_tags)), metric)
        metric_entry[METRIC_TAGS].update(metric_tags)
        return metric_entry

    def send_data_via_http(self, metrics):
        if self.dryrun:
            print("Would have sent:\n%s" % json.dumps(metrics,
                                                      sort_keys=True,
                                                      indent=4))
            return

        if (self.current_tsd == -1) or (len(self.hosts) > 1):
            self.pick_connection()
        LOG.debug("Sending metrics to http://%s:%s/api/put?details",
                  self.host, self.port)
        if self.ssl:
            protocol = "https"
        else:
            protocol = "http"
        url = "%s://%s:%s/api/put" % (protocol, self.host, self.port)
        params = {'details': ''}
        if self.token:
            params['token'] = self.token
        auth = None
        if self.http_username and self.http_password:
            auth = (self.http_username, self.http_password)
        payload = json.dumps(metrics)
        LOG.info('put request payload %d', len(payload))
        try:
            response = requests.post(url, params=params, data=payload, auth=auth,
                                     headers={'Content-Type': 'application/json'},
                                     verify=False, timeout=HTTP_TIMEOUT)
            LOG.debug("Received response %s", response.status_code)
            response.raise_for_status()
        except requests.exceptions.HTTPError:
            LOG.exception("Got error when sending to server %s", self.host)
        except requests.exceptions.RequestException:
            LOG.exception("unknown error when sending to server %s:%d", self.host, self.port)
            self.blacklist_connection()
            raise

    def pick_connection(self):
        """Picks up a random host/port connection."""
        # Try to get the next host from the list, until we find a host that
        # isn't in the blacklist, or until we run out of hosts (i.e. they
        # are all blacklisted, which typically happens when we lost our
        # connectivity to the outside world).
        for self.current_tsd in range(self.current_tsd + 1, len(self.hosts)):
            hostport = self.hosts[self.current_tsd]
            if hostport not in self.blacklisted_hosts:
                break
        else:
            LOG.info('No more healthy hosts, retry with previously blacklisted')
            random.shuffle(self.hosts)
            self.blacklisted_hosts.clear()
            self.current_tsd = 0
            hostport = self.hosts[self.current_tsd]
        # noinspection PyAttributeOutsideInit
        self.host, self.port = hostport
        LOG.info('Selected connection: %s:%d', self.host, self.port)

    def blacklist_connection(self):
        """Marks the current TSD host we're trying to use as blacklisted.

           Blacklisted hosts will get another chance to be elected once there
           will be no more healthy hosts."""
        LOG.info('Blacklisting %s:%s for a while', self.host, self.port)
        self.blacklisted_hosts.add((self.host, self.port))


if __name__ == '__main__':
    sys.exit(main(sys.argv))
