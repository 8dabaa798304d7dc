import configparser
import logging
import os

from drill import DrillError, parse_node_address

DEFAULT_CONFIG_FILE = '~/.mv-drill'

DEFAULT_NODES = ['127.0.0.1:9042',
                 '127.0.0.2:9042',
                 '127.0.0.3:9042',
                 '127.0.0.4:9042',
                 '127.0.0.5:9042']

logger = logging.getLogger(__name__)


class DrillConfigError(DrillError):
    pass


# option name -> converter, for values read from the ini file
_INI_OPTIONS = {
    'nodes': lambda value: [node.strip() for node in value.split(',') if node.strip()],
    'keyspace': str,
    'table': str,
    'view': str,
    'replication_factor': int,
    'writer_count': int,
    'write_interval': float,
    'write_attempts': int,
    'write_backoff': float,
    'report_interval': float,
    'settle_time': float,
    'check_interval': float,
    'max_checks': int,
    'fetch_size': int,
    'skip_schema_setup': lambda value: value.strip().lower() in ('1', 'yes', 'true', 'on'),
}


class DrillConfig:
    def __init__(self):
        self.nodes = list(DEFAULT_NODES)
        self.keyspace = 'view_test'
        self.table = 'tab'
        self.view = 'tab_view'
        self.replication_factor = 3
        self.writer_count = 512
        self.write_interval = 0.1
        self.write_attempts = 8
        self.write_backoff = 0.064
        self.report_interval = 4.0
        self.settle_time = 60.0
        self.check_interval = 60.0
        self.max_checks = None
        self.fetch_size = None
        self.skip_schema_setup = False
        self.debug = False

    def load_file(self, path=None):
        """
        Overrides the defaults with the [main] section of the drill config file, if there is one.
        """
        if path is None:
            path = os.environ.get('MV_DRILL_CONFIG', DEFAULT_CONFIG_FILE)
        path = os.path.expanduser(path)

        config = configparser.RawConfigParser()
        if len(config.read(path)) == 0 or not config.has_section('main'):
            return self

        logger.debug("Reading drill configuration from {}".format(path))
        for option in config.options('main'):
            if option not in _INI_OPTIONS:
                raise DrillConfigError("Unknown option '{}' in {}".format(option, path))
            try:
                setattr(self, option, _INI_OPTIONS[option](config.get('main', option)))
            except ValueError as e:
                raise DrillConfigError("Invalid value for '{}' in {}: {}".format(option, path, e))
        return self

    def setup(self, options):
        """
        Reads and validates configuration. Throws DrillConfigError if configuration is invalid.

        options is an argparse namespace; attributes left at None keep the current value.
        """
        for name in _INI_OPTIONS:
            value = getattr(options, name, None)
            if value is not None:
                setattr(self, name, value)
        self.debug = getattr(options, 'debug', False) or self.debug

        self.validate()
        return self

    def validate(self):
        if not self.nodes:
            raise DrillConfigError("At least one node address is required")
        for node in self.nodes:
            try:
                parse_node_address(node)
            except DrillError as e:
                raise DrillConfigError(str(e))

        for name in ('replication_factor', 'writer_count', 'write_attempts'):
            if getattr(self, name) < 1:
                raise DrillConfigError("{} must be at least 1, got {}".format(name, getattr(self, name)))

        for name in ('write_interval', 'write_backoff', 'report_interval', 'settle_time', 'check_interval'):
            if getattr(self, name) < 0:
                raise DrillConfigError("{} must not be negative, got {}".format(name, getattr(self, name)))

        if self.max_checks is not None and self.max_checks < 1:
            raise DrillConfigError("max_checks must be at least 1, got {}".format(self.max_checks))
        if self.fetch_size is not None and self.fetch_size < 1:
            raise DrillConfigError("fetch_size must be at least 1, got {}".format(self.fetch_size))

        if self.replication_factor > len(self.nodes):
            logger.warning("Replication factor {} is higher than the {} configured nodes"
                           .format(self.replication_factor, len(self.nodes)))
