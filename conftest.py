import logging
import platform
import socket
from datetime import datetime

import psutil
import pytest

from drill_setup import DrillSetup, DrillTestConfig

logger = logging.getLogger(__name__)

# the drill cluster runs one node per loopback address, 127.0.0.1 to 127.0.0.5
REQUIRED_LOOPBACK_ADDRESSES = 5


def check_required_loopback_interfaces_available():
    """
    On Linux, loopback interfaces are automatically created as they are used, but on Mac they
    need to be explicitly created. Check if we're running on Mac (Darwin), and if so check we have
    enough loopback aliases for the drill cluster, otherwise bail out with some helpful advice.
    """
    if platform.system() == "Darwin":
        addresses = [address for address in psutil.net_if_addrs().get('lo0', [])
                     if address.family == socket.AF_INET]
        if len(addresses) < REQUIRED_LOOPBACK_ADDRESSES:
            pytest.exit("At least {n} loopback interfaces are required to run the drill cluster tests. "
                        "On Mac you can create the required loopback interfaces by running "
                        "'for i in {{1..{n}}}; do sudo ifconfig lo0 alias 127.0.0.$i up; done;'"
                        .format(n=REQUIRED_LOOPBACK_ADDRESSES))


def pytest_addoption(parser):
    parser.addoption("--cassandra-dir", action="store", default=None,
                     help="The directory containing the built C* artifacts to run the cluster tests against. "
                          "Without it (or --cassandra-version) the cluster tests are skipped.")
    parser.addoption("--cassandra-version", action="store", default=None,
                     help="A specific C* version to run the cluster tests against. ccm will "
                          "pull the required artifacts for this version.")
    parser.addoption("--keep-test-dir", action="store_true", default=False,
                     help="Do not remove/cleanup the test ccm cluster directory and it's artifacts "
                          "after the test completes")
    parser.addoption("--force-resource-intensive-tests", action="store_true", default=False,
                     help="Forces the execution of tests marked as resource_intensive")
    parser.addoption("--skip-resource-intensive-tests", action="store_true", default=False,
                     help="Skip all tests marked as resource_intensive")


def pytest_configure(config):
    """Fail fast if arguments are invalid"""
    if not config.getoption("--help"):
        DrillTestConfig().setup(config)


def sufficient_system_resources_for_resource_intensive_tests():
    mem = psutil.virtual_memory()
    total_mem_gb = mem.total / 1024 / 1024 / 1024
    logger.info("total available system memory is %dGB" % total_mem_gb)
    # five nodes at 2gb a piece plus the drill itself
    return total_mem_gb >= 12


@pytest.fixture(scope="function", autouse=True)
def fixture_logging_setup(request):
    """
    Set the root logger level to whatever the user asked for with --log-level
    (or log_level in the ini file), INFO otherwise.
    """
    log_level = logging.INFO
    log_level_option = request.config.getoption("--log-level") or request.config.getini("log_level")
    if log_level_option:
        log_level = logging.getLevelName(log_level_option.upper())

    logging.root.setLevel(log_level)

    # next, regardless of the level we set above (and requested by the user),
    # reconfigure the "cassandra" logger to minimum INFO level; DEBUG is just
    # insanely noisy and verbose
    if log_level == logging.DEBUG:
        cassandra_module_log_level = logging.INFO
    else:
        cassandra_module_log_level = log_level
    logging.getLogger("cassandra").setLevel(cassandra_module_log_level)


@pytest.fixture(scope='function', autouse=True)
def fixture_log_test_name_and_date(request, fixture_logging_setup):
    logger.info("Starting execution of %s at %s" % (request.node.name, str(datetime.now())))


@pytest.fixture(scope='session')
def drill_test_config(request):
    return DrillTestConfig().setup(request.config)


@pytest.hookimpl(hookwrapper=True, tryfirst=True)
def pytest_runtest_makereport(item, call):
    outcome = yield
    rep = outcome.get_result()
    setattr(item, "rep_" + rep.when, rep)
    return rep


@pytest.fixture(scope='function')
def fixture_drill_setup(request, drill_test_config):
    if not drill_test_config.has_cluster:
        pytest.skip("cluster tests need --cassandra-dir or --cassandra-version")

    check_required_loopback_interfaces_available()

    drill_setup = DrillSetup(drill_test_config)
    drill_setup.create_ccm_cluster()

    yield drill_setup

    try:
        failed = getattr(request.node, 'rep_call', None) is not None and request.node.rep_call.failed
        if failed:
            drill_setup.copy_logs(request.node.name)
    except Exception as e:
        logger.error("Error saving log: {}".format(e))
    finally:
        drill_setup.cleanup_cluster()


def pytest_collection_modifyitems(items, config):
    """
    Deselect resource intensive tests when asked to, or when this machine can't
    run them and --force-resource-intensive-tests was not given.
    """
    test_config = DrillTestConfig().setup(config)
    if test_config.force_execution_of_resource_intensive_tests:
        return

    skip_resource_intensive = test_config.skip_resource_intensive_tests
    if not skip_resource_intensive and any(item.get_closest_marker("resource_intensive") for item in items):
        skip_resource_intensive = not sufficient_system_resources_for_resource_intensive_tests()
        if skip_resource_intensive:
            logger.info("Resource intensive tests will be skipped because "
                        "there is not enough system resources "
                        "and --force-resource-intensive-tests was not specified")
    if not skip_resource_intensive:
        return

    selected_items = []
    deselected_items = []
    for item in items:
        if item.get_closest_marker("resource_intensive") is not None:
            deselected_items.append(item)
        else:
            selected_items.append(item)

    config.hook.pytest_deselected(items=deselected_items)
    items[:] = selected_items
