import logging
import sys

import cassandra

from cassandra import ConsistencyLevel, OperationTimedOut
from cassandra.cluster import Cluster as PyCluster
from cassandra.cluster import EXEC_PROFILE_DEFAULT, ExecutionProfile, NoHostAvailable
from cassandra.policies import FallthroughRetryPolicy, RetryPolicy, RoundRobinPolicy, WhiteListRoundRobinPolicy

from tools.misc import retry_till_success

DEFAULT_NATIVE_PORT = 9042

logger = logging.getLogger(__name__)

logger.debug("Python driver version in use: {}".format(cassandra.__version__))


class DrillError(Exception):
    pass


def make_execution_profile(retry_policy=None, consistency_level=ConsistencyLevel.ONE, **kwargs):
    if retry_policy is None:
        retry_policy = RetryPolicy()
    if 'load_balancing_policy' in kwargs:
        return ExecutionProfile(retry_policy=retry_policy,
                                consistency_level=consistency_level,
                                **kwargs)
    else:
        return ExecutionProfile(retry_policy=retry_policy,
                                consistency_level=consistency_level,
                                load_balancing_policy=RoundRobinPolicy(),
                                **kwargs)


def parse_node_address(address, default_port=DEFAULT_NATIVE_PORT):
    """
    Split 'host[:port]' into (host, port).
    """
    host, sep, port = address.strip().rpartition(':')
    if not sep:
        host, port = port, default_port
    if not host:
        raise DrillError("Invalid node address '{}'".format(address))
    try:
        port = int(port)
    except ValueError:
        raise DrillError("Invalid port in node address '{}'".format(address))
    return host, port


def print_msg(message):
    print(message)
    sys.stdout.flush()


def _create_session(address, keyspace=None, protocol_version=None, connect_timeout=15, **kwargs):
    host, port = parse_node_address(address)
    profiles = {EXEC_PROFILE_DEFAULT: make_execution_profile(**kwargs)}
    cluster_kwargs = {}
    if protocol_version is not None:
        cluster_kwargs['protocol_version'] = protocol_version

    cluster = PyCluster([host],
                        port=port,
                        connect_timeout=connect_timeout,
                        execution_profiles=profiles,
                        **cluster_kwargs)
    session = cluster.connect(keyspace)
    logger.debug("Connected to {} with {}".format(address, profiles[EXEC_PROFILE_DEFAULT].consistency_level))
    return session


def cql_connection(address, consistency_level=ConsistencyLevel.QUORUM, keyspace=None, retry_policy=None, **kwargs):
    """
    Session that may route requests to every node of the cluster.

    Every request is sent once: the driver hands timeouts and unavailable
    errors straight back, so the caller owns the retry budget.
    """
    if retry_policy is None:
        retry_policy = FallthroughRetryPolicy()
    return _create_session(address, keyspace=keyspace, consistency_level=consistency_level,
                           retry_policy=retry_policy, **kwargs)


def exclusive_cql_connection(address, consistency_level=ConsistencyLevel.ONE, keyspace=None, **kwargs):
    """
    Session that only ever talks to the node at address, so reads at ONE see that
    node's local data.
    """
    host, _ = parse_node_address(address)
    wlrr = WhiteListRoundRobinPolicy([host])
    return _create_session(address, keyspace=keyspace, consistency_level=consistency_level,
                           load_balancing_policy=wlrr, **kwargs)


def patient_cql_connection(address, timeout=30, **kwargs):
    """
    Returns a connection after it stops throwing NoHostAvailables due to not being ready.

    If the timeout is exceeded, the exception is raised.
    """
    return retry_till_success(cql_connection, address, timeout=timeout,
                              bypassed_exception=NoHostAvailable, **kwargs)


def patient_exclusive_cql_connection(address, timeout=30, **kwargs):
    return retry_till_success(exclusive_cql_connection, address, timeout=timeout,
                              bypassed_exception=NoHostAvailable, **kwargs)


def create_ks(session, name, rf):
    query = "CREATE KEYSPACE %s WITH replication={'class':'SimpleStrategy', 'replication_factor':%d}" % (name, rf)

    try:
        retry_till_success(session.execute, query=query, timeout=120, bypassed_exception=OperationTimedOut)
    except cassandra.AlreadyExists:
        logger.warning('AlreadyExists executing create ks query \'%s\'' % query)

    session.cluster.control_connection.wait_for_schema_agreement(wait_time=120)
    # Also validates it was indeed created even though we ignored OperationTimedOut
    session.execute('USE {}'.format(name))


def shutdown_sessions(sessions):
    for session in sessions:
        try:
            session.cluster.shutdown()
        except Exception as e:
            logger.warning("Error shutting down connection: {}".format(e))
