import logging

from collections import namedtuple

from cassandra import OperationTimedOut

from drill import create_ks
from tools.misc import retry_till_success

logger = logging.getLogger(__name__)

Row = namedtuple('Row', ['p', 'c', 'r'])


def _row_order(row):
    """(p, c) is the primary key of both the base table and the view, so it orders a snapshot fully."""
    return (row.p, row.c)


def _execute_ddl(session, query):
    logger.debug(query)
    retry_till_success(session.execute, query=query, timeout=120, bypassed_exception=OperationTimedOut)
    session.cluster.control_connection.wait_for_schema_agreement(wait_time=120)


def create_view_schema(session, keyspace='view_test', replication_factor=3, table='tab', view='tab_view',
                       drop_existing=True):
    """
    (Re)create the base table and its materialized view.

    The base table is keyed (p, c); the view re-keys the same rows on the
    composite partition key (p, c), so every base row has exactly one view row.
    """
    if drop_existing:
        _execute_ddl(session, "DROP KEYSPACE IF EXISTS {}".format(keyspace))

    create_ks(session, keyspace, replication_factor)
    _execute_ddl(session, "CREATE TABLE {ks}.{table} (p int, c int, r int, PRIMARY KEY (p, c))"
                 .format(ks=keyspace, table=table))
    _execute_ddl(session, "CREATE MATERIALIZED VIEW {ks}.{view} AS SELECT p, c, r FROM {ks}.{table} "
                          "WHERE p IS NOT NULL AND c IS NOT NULL PRIMARY KEY ((p, c))"
                 .format(ks=keyspace, table=table, view=view))


def read_all_rows(session, table, keyspace='view_test', fetch_size=None):
    """
    Read every row of keyspace.table through session and return them sorted by (p, c).

    The scan is paged by the server; the driver fetches the following pages while
    we iterate. Which node(s) answer and at what consistency level is decided by
    the session alone.
    """
    select = session.prepare("SELECT p, c, r FROM {}.{}".format(keyspace, table))
    select.is_idempotent = True
    if fetch_size is not None:
        select.fetch_size = fetch_size

    rows = [Row(*row) for row in session.execute(select)]
    rows.sort(key=_row_order)
    logger.debug("Read {} rows from {}.{}".format(len(rows), keyspace, table))
    return rows
