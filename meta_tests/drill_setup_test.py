from unittest import TestCase

import ccmlib.repository
from cassandra import OperationTimedOut
from mock import Mock, patch
from pytest import UsageError, raises

from drill_setup import DrillSetup, DrillTestConfig, failure_due_to_timeout


def _mock_responses(responses, default_response=None):
    return lambda input: responses[input] if input in responses else default_response


def _check_with_params(params):
    config = Mock()
    config.getoption.side_effect = _mock_responses(params)

    return DrillTestConfig().setup(config)


def _check_with_params_expect(params, pattern):
    with raises(UsageError, match=pattern):
        _check_with_params(params)


@patch('drill_setup.get_version_from_build', return_value='4.0.1')
class DrillTestConfigTest(TestCase):

    def test_no_cass_dir_no_version(self, mock_version):
        c = _check_with_params({})
        assert not c.has_cluster
        assert c.cassandra_version_from_build is None
        mock_version.assert_not_called()

    def test_blank_cass_dir_is_ignored(self, mock_version):
        c = _check_with_params({'--cassandra-dir': '  '})
        assert c.cassandra_dir is None
        assert not c.has_cluster

    def test_valid_cass_dir(self, mock_version):
        c = _check_with_params({'--cassandra-dir': '/opt/cassandra'})
        assert c.has_cluster
        assert c.cassandra_version_from_build == '4.0.1'
        mock_version.assert_called_once_with('/opt/cassandra')

    def test_invalid_cass_dir(self, mock_version):
        mock_version.side_effect = FileNotFoundError("no build.xml")
        _check_with_params_expect({'--cassandra-dir': 'blah'},
                                  "The Cassandra directory blah does not seem to be valid")

    def test_cass_dir_and_version(self, mock_version):
        _check_with_params_expect({'--cassandra-dir': '/opt/cassandra', '--cassandra-version': '4.0'},
                                  "Cassandra build directory is already defined")

    def test_version_only(self, mock_version):
        with patch.object(ccmlib.repository, "setup", return_value=('/cache/4.0', '4.0')) as mocked_setup:
            c = _check_with_params({'--cassandra-version': '4.0'})
        mocked_setup.assert_called_once_with('4.0')
        mock_version.assert_called_once_with('/cache/4.0')
        assert c.has_cluster

    def test_skip_and_force_resource_intensive(self, mock_version):
        _check_with_params_expect({'--skip-resource-intensive-tests': True,
                                   '--force-resource-intensive-tests': True},
                                  "does not make any sense")


class DrillSetupTest(TestCase):

    def test_address_of_node(self):
        node = Mock(network_interfaces={'binary': ('127.0.0.3', 9042)})
        assert DrillSetup.address_of(node) == '127.0.0.3:9042'

    @patch('drill_setup.exclusive_cql_connection')
    def test_sessions_are_shut_down_on_cleanup(self, mock_connect):
        setup = DrillSetup(Mock(keep_test_dir=True))
        session = setup.exclusive_cql_connection(Mock(network_interfaces={'binary': ('127.0.0.2', 9042)}))

        mock_connect.assert_called_once_with('127.0.0.2:9042')
        setup.cleanup_cluster()
        session.cluster.shutdown.assert_called_once_with()
        assert setup.connections == []

    def test_only_timeouts_are_rerun(self):
        assert failure_due_to_timeout((OperationTimedOut, OperationTimedOut(), None))
        assert not failure_due_to_timeout((AssertionError, AssertionError(), None))
