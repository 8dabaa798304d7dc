import errno
import logging
import os
import shutil
import tempfile
import time

import pytest
from ccmlib.cluster import Cluster
from ccmlib.common import get_version_from_build, is_win
from flaky import flaky
from pytest import UsageError

import ccmlib.repository
from cassandra import OperationTimedOut
from ccmlib.node import TimeoutError, ToolError

from drill import (exclusive_cql_connection, cql_connection, patient_cql_connection,
                   patient_exclusive_cql_connection, shutdown_sessions)

logger = logging.getLogger(__name__)


class DrillTestConfig:
    """
    Settings for the ccm backed cluster tests, taken from the pytest command line.
    """

    def __init__(self):
        self.cassandra_dir = None
        self.cassandra_version = None
        self.cassandra_version_from_build = None
        self.keep_test_dir = False
        self.force_execution_of_resource_intensive_tests = False
        self.skip_resource_intensive_tests = False

    def setup(self, config):
        """
        Reads and validates configuration. Throws UsageError if configuration is invalid.
        """
        self.force_execution_of_resource_intensive_tests = config.getoption("--force-resource-intensive-tests")
        self.skip_resource_intensive_tests = config.getoption("--skip-resource-intensive-tests")
        self.keep_test_dir = config.getoption("--keep-test-dir")

        cassandra_dir = config.getoption("--cassandra-dir")
        if cassandra_dir is not None and cassandra_dir.strip() == "":
            cassandra_dir = None
        if cassandra_dir is not None:
            self.cassandra_dir = os.path.expanduser(cassandra_dir)
        self.cassandra_version = config.getoption("--cassandra-version")

        if self.cassandra_version is not None and self.cassandra_dir is not None:
            raise UsageError("Please remove --cassandra-version because Cassandra build directory is already "
                             "defined by --cassandra-dir")

        if self.skip_resource_intensive_tests and self.force_execution_of_resource_intensive_tests:
            raise UsageError("--skip-resource-intensive-tests does not make any sense with "
                             "--force-resource-intensive-tests.")

        try:
            self.cassandra_version_from_build = self.get_version_from_build()
        except FileNotFoundError as fnfe:
            raise UsageError("The Cassandra directory %s does not seem to be valid: %s" % (self.cassandra_dir, fnfe))
        return self

    @property
    def has_cluster(self):
        return self.cassandra_dir is not None or self.cassandra_version is not None

    def get_version_from_build(self):
        if self.cassandra_version is not None:
            ccm_repo_cache_dir, _ = ccmlib.repository.setup(self.cassandra_version)
            return get_version_from_build(ccm_repo_cache_dir)
        elif self.cassandra_dir is not None:
            return get_version_from_build(self.cassandra_dir)


class DrillSetup:
    """
    Owns the ccm cluster of one test and the driver sessions opened against it.
    """

    def __init__(self, test_config, cluster_name="drill"):
        self.test_config = test_config
        self.cluster_name = cluster_name
        self.cluster = None
        self.connections = []
        self.test_path = tempfile.mkdtemp(prefix='mv-drill-')
        self.log_saved_dir = "logs"

    def create_ccm_cluster(self):
        logger.debug("cluster ccm directory: " + self.test_path)
        version = self.test_config.cassandra_version
        if version:
            cluster = Cluster(self.test_path, self.cluster_name, cassandra_version=version)
        else:
            cluster = Cluster(self.test_path, self.cluster_name, cassandra_dir=self.test_config.cassandra_dir)

        # the failure detector can be quite slow in such tests with quick start/stop
        cluster.set_configuration_options(values={'phi_convict_threshold': 5,
                                                  'enable_materialized_views': 'true'})
        self.cluster = cluster
        return cluster

    @staticmethod
    def address_of(node):
        host, port = node.network_interfaces['binary']
        return "{}:{}".format(host, port)

    def _track(self, session):
        self.connections.append(session)
        return session

    def cql_connection(self, node, **kwargs):
        return self._track(cql_connection(self.address_of(node), **kwargs))

    def exclusive_cql_connection(self, node, **kwargs):
        return self._track(exclusive_cql_connection(self.address_of(node), **kwargs))

    def patient_cql_connection(self, node, timeout=30, **kwargs):
        if is_win():
            timeout *= 2
        return self._track(patient_cql_connection(self.address_of(node), timeout=timeout, **kwargs))

    def patient_exclusive_cql_connection(self, node, timeout=30, **kwargs):
        if is_win():
            timeout *= 2
        return self._track(patient_exclusive_cql_connection(self.address_of(node), timeout=timeout, **kwargs))

    def copy_logs(self, name):
        """Copy the current cluster's log files to logs/<timestamp>_<name>"""
        logdir = os.path.join(self.log_saved_dir, str(int(time.time() * 1000)) + '_' + name)
        os.makedirs(logdir)
        for node in self.cluster.nodelist():
            if os.path.exists(node.logfilename()):
                shutil.copyfile(node.logfilename(), os.path.join(logdir, node.name + ".log"))
        logger.info("Saved node logs to {}".format(logdir))

    def cleanup_cluster(self):
        shutdown_sessions(self.connections)
        self.connections = []
        if self.cluster is None:
            return

        if self.test_config.keep_test_dir:
            self.cluster.stop(gently=False)
            return

        logger.debug("removing ccm cluster {name} at: {path}".format(name=self.cluster.name, path=self.test_path))
        self.cluster.remove()
        try:
            os.rmdir(self.test_path)
        except OSError as e:
            # ENOENT = no such file or directory
            assert e.errno == errno.ENOENT


def failure_due_to_timeout(err, *args):
    """
    Only rerun a test failed by a driver or ccm timeout, which is what a slow
    machine typically produces while nodes are being killed and restarted.
    """
    return issubclass(err[0], (OperationTimedOut, ToolError, TimeoutError))


@flaky(rerun_filter=failure_due_to_timeout)
class Tester:

    @pytest.fixture(scope='function', autouse=True)
    def set_drill_setup_on_function(self, fixture_drill_setup):
        self.drill_setup = fixture_drill_setup
        self.cluster = fixture_drill_setup.cluster
