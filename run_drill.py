#!/usr/bin/env python
"""
usage: run_drill.py [-h] [--config CONFIG] [--nodes NODES] [--keyspace KEYSPACE] [--writer-count WRITER_COUNT] ...

Materialized view consistency drill. Expects a running cluster (5 nodes on
127.0.0.1-5 by default). Writes are sent continuously while the operator kills
and restarts nodes; pressing Enter stops the writes, and after the cluster had
time to settle the view on every node is compared with the base table over
and over.
"""
import argparse
import logging
import sys
import threading
import time

from cassandra.cluster import NoHostAvailable

from drill import (DrillError, patient_cql_connection, patient_exclusive_cql_connection, print_msg,
                   shutdown_sessions)
from drill_config import DrillConfig, DrillConfigError
from loadmaker import WriteLoadGenerator
from tools.data import create_view_schema
from tools.flaky import RetriesExhausted
from view_checker import ConsistencyChecker

logger = logging.getLogger(__name__)

LOGGING_FORMAT = '%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s'


def configure_logging(debug=False):
    log_level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=log_level, format=LOGGING_FORMAT)
    logging.root.setLevel(log_level)

    # DEBUG from the driver is insanely noisy and of very limited help here
    logging.getLogger("cassandra").setLevel(logging.INFO)


def _node_list(value):
    return [node.strip() for node in value.split(',') if node.strip()]


class RunDrill():
    def __init__(self, stdin=None, connect=patient_cql_connection,
                 connect_exclusive=patient_exclusive_cql_connection):
        self.stdin = stdin if stdin is not None else sys.stdin
        self.connect = connect
        self.connect_exclusive = connect_exclusive

    def build_parser(self):
        defaults = DrillConfig()
        parser = argparse.ArgumentParser(description="Materialized view consistency drill",
                                         formatter_class=lambda prog: argparse.HelpFormatter(prog,
                                                                                             max_help_position=50,
                                                                                             width=120))
        parser.add_argument("--config", action="store", default=None,
                            help="Path to an ini file with a [main] section overriding the defaults "
                                 "(default: $MV_DRILL_CONFIG or ~/.mv-drill)")
        parser.add_argument("--nodes", type=_node_list, default=None,
                            help="Comma separated host[:port] list; the first one is used for the quorum "
                                 "session (default: {})".format(','.join(defaults.nodes)))
        parser.add_argument("--keyspace", default=None,
                            help="Keyspace holding the table and the view (default: {})".format(defaults.keyspace))
        parser.add_argument("--table", default=None,
                            help="Base table name (default: {})".format(defaults.table))
        parser.add_argument("--view", default=None,
                            help="Materialized view name (default: {})".format(defaults.view))
        parser.add_argument("--replication-factor", dest="replication_factor", type=int, default=None,
                            help="Replication factor of the keyspace (default: {})".format(defaults.replication_factor))
        parser.add_argument("--writer-count", dest="writer_count", type=int, default=None,
                            help="Number of concurrent writers (default: {})".format(defaults.writer_count))
        parser.add_argument("--write-interval", dest="write_interval", type=float, default=None,
                            help="Seconds between two writes of one writer (default: {})".format(defaults.write_interval))
        parser.add_argument("--write-attempts", dest="write_attempts", type=int, default=None,
                            help="Attempts per write before the drill gives up (default: {})"
                            .format(defaults.write_attempts))
        parser.add_argument("--write-backoff", dest="write_backoff", type=float, default=None,
                            help="Seconds to sleep between two attempts of a write (default: {})"
                            .format(defaults.write_backoff))
        parser.add_argument("--report-interval", dest="report_interval", type=float, default=None,
                            help="Seconds between two progress lines (default: {})".format(defaults.report_interval))
        parser.add_argument("--settle-time", dest="settle_time", type=float, default=None,
                            help="Seconds to wait after stopping the writes (default: {})".format(defaults.settle_time))
        parser.add_argument("--check-interval", dest="check_interval", type=float, default=None,
                            help="Seconds between two verification passes (default: {})".format(defaults.check_interval))
        parser.add_argument("--max-checks", dest="max_checks", type=int, default=None,
                            help="Exit after this many verification passes (default: run until killed)")
        parser.add_argument("--fetch-size", dest="fetch_size", type=int, default=None,
                            help="Page size of the verification scans (default: driver default)")
        parser.add_argument("--skip-schema-setup", dest="skip_schema_setup", action="store_true", default=None,
                            help="Reuse the existing keyspace, table and view instead of recreating them")
        parser.add_argument("--debug", action="store_true", default=False,
                            help="Enable debug logging")
        return parser

    def run(self, argv):
        args = self.build_parser().parse_args(argv)

        try:
            config = DrillConfig().load_file(args.config).setup(args)
        except DrillConfigError as e:
            print("Invalid configuration: {}".format(e), file=sys.stderr)
            return 2

        configure_logging(config.debug)

        sessions = []
        try:
            return self.drill(config, sessions)
        except KeyboardInterrupt:
            print_msg("Interrupted")
            return 130
        except NoHostAvailable as e:
            logger.error("Could not connect to the cluster: {}".format(e))
            return 1
        except RetriesExhausted as e:
            logger.error("A write could not be done, the workload is broken: {}".format(e))
            return 1
        except DrillError as e:
            logger.error("Drill aborted: {}".format(e))
            return 1
        finally:
            shutdown_sessions(sessions)

    def drill(self, config, sessions):
        print_msg("Connecting...")

        # The main session talks to all nodes at QUORUM, the node sessions each
        # talk to a single node at ONE.
        session = self.connect(config.nodes[0])
        sessions.append(session)
        node_sessions = []
        for node in config.nodes:
            node_sessions.append(self.connect_exclusive(node))
            sessions.append(node_sessions[-1])

        if config.skip_schema_setup:
            logger.info("Reusing existing schema in keyspace {}".format(config.keyspace))
        else:
            create_view_schema(session, keyspace=config.keyspace, replication_factor=config.replication_factor,
                               table=config.table, view=config.view)

        print_msg("Starting the writes, please kill and restart one node while the writes are being sent.")
        generator = WriteLoadGenerator(session, keyspace=config.keyspace, table=config.table,
                                       max_attempts=config.write_attempts, backoff=config.write_backoff,
                                       report_interval=config.report_interval)
        stopper = generator.start(writer_count=config.writer_count, interval=config.write_interval)

        self.wait_for_enter(stopper)

        stopper.stop()
        print_msg("Stopped the writes, let's wait {}s for the cluster to settle.".format(config.settle_time))
        time.sleep(config.settle_time)

        checker = ConsistencyChecker(session, node_sessions, keyspace=config.keyspace, base_table=config.table,
                                     view=config.view, node_names=config.nodes, fetch_size=config.fetch_size)
        checker.run_forever(interval=config.check_interval, max_passes=config.max_checks,
                            before_pass=stopper.check)
        return 0

    def wait_for_enter(self, stopper, poll_interval=0.25):
        """
        Block until a line is read from stdin, raising the error of a failed writer
        as soon as there is one.
        """
        entered = threading.Event()

        def read_line():
            self.stdin.readline()
            entered.set()

        threading.Thread(target=read_line, name='stdin-reader', daemon=True).start()
        while not entered.is_set():
            if stopper.wait_for_failure(poll_interval):
                break
        stopper.check()


def main():
    sys.exit(RunDrill().run(sys.argv[1:]))


if __name__ == '__main__':
    main()
