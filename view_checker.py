import logging
import time

from collections import namedtuple

from drill import print_msg
from tools.data import read_all_rows

logger = logging.getLogger(__name__)

NodeCheckResult = namedtuple('NodeCheckResult', ['node_index', 'node_name', 'matches', 'base_count', 'view_count'])


def all_match(results):
    return all(result.matches for result in results)


class ConsistencyChecker(object):
    """
    Compares the base table, read through base_session, against the view as
    stored on every single node, read through that node's exclusive session.

    base_session is expected to read at QUORUM and node_sessions at ONE, each
    restricted to its own host; the checker itself does not care.
    A mismatch is reported and returned, it is not an error: views are
    expected to lag for a while after a node comes back.
    """

    def __init__(self, base_session, node_sessions, keyspace='view_test', base_table='tab', view='tab_view',
                 node_names=None, report=print_msg, fetch_size=None):
        if node_names is not None and len(node_names) != len(node_sessions):
            raise ValueError("Got {} node names for {} node sessions".format(len(node_names), len(node_sessions)))
        self.base_session = base_session
        self.node_sessions = list(node_sessions)
        self.node_names = list(node_names) if node_names is not None else None
        self.keyspace = keyspace
        self.base_table = base_table
        self.view = view
        self.report = report
        self.fetch_size = fetch_size

    def _node_label(self, node_index):
        if self.node_names is None:
            return "#{}".format(node_index)
        return "#{} ({})".format(node_index, self.node_names[node_index])

    def check(self):
        """
        Run one verification pass and return a NodeCheckResult per node.
        """
        base_rows = read_all_rows(self.base_session, self.base_table, keyspace=self.keyspace,
                                  fetch_size=self.fetch_size)
        results = []
        for node_index, node_session in enumerate(self.node_sessions):
            view_rows = read_all_rows(node_session, self.view, keyspace=self.keyspace, fetch_size=self.fetch_size)
            label = self._node_label(node_index)
            matches = view_rows == base_rows
            if matches:
                self.report("View from node {} matches the base table".format(label))
            else:
                self.report("ERROR: View from node {} doesn't match the base table".format(label))
                self.report("base rows: {}, view rows: {}".format(len(base_rows), len(view_rows)))
            name = self.node_names[node_index] if self.node_names is not None else str(node_index)
            results.append(NodeCheckResult(node_index, name, matches, len(base_rows), len(view_rows)))
        return results

    def run_forever(self, interval=60, max_passes=None, before_pass=None):
        """
        Repeat check() every interval seconds. Only returns, with the results of
        the last pass, once max_passes passes were made.
        """
        passes = 0
        while True:
            if before_pass is not None:
                before_pass()
            self.report("Verifying view table integrity...")
            results = self.check()
            passes += 1
            logger.debug("Check pass {}: {} of {} views match".format(
                passes, sum(1 for result in results if result.matches), len(results)))
            if max_passes is not None and passes >= max_passes:
                return results
            self.report("\nThe check will be repeated after {}s".format(interval))
            time.sleep(interval)
