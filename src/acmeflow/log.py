"""Logging utilities for the acmeflow command.

Library code only logs through module level loggers; nothing is
emitted unless the host application configures logging, or the
``acmeflow`` command calls `setup_logging`.

The default verbosity of the terminal output is WARNING, ``-v`` shows
progress messages and ``-vv`` protocol messages. A log file, when
requested, always receives everything.

"""
import logging
import logging.handlers
import sys
from typing import IO
from typing import List
from typing import Optional

from acmeflow import configuration
from acmeflow import constants
from acmeflow import errors

# Logging format
CLI_FMT = "%(message)s"
FILE_FMT = "%(asctime)s:%(levelname)s:%(name)s:%(message)s"

ANSI_SGR_RED = "\033[31m"
ANSI_SGR_RESET = "\033[0m"

logger = logging.getLogger(__name__)


def setup_logging(config: configuration.NamespaceConfig) -> List[logging.Handler]:
    """Configure the root logger for a command line run.

    :param acmeflow.configuration.NamespaceConfig config: Configuration object

    :returns: The installed handlers.
    :rtype: list

    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    stderr_handler = ColoredStreamHandler()
    stderr_handler.setFormatter(logging.Formatter(CLI_FMT))
    stderr_handler.setLevel(terminal_level(config))
    root_logger.addHandler(stderr_handler)
    handlers: List[logging.Handler] = [stderr_handler]

    if config.log_file:
        file_handler = setup_log_file_handler(config, config.log_file, FILE_FMT)
        root_logger.addHandler(file_handler)
        handlers.append(file_handler)

    logger.debug('Root logging level set at %d', stderr_handler.level)
    return handlers


def terminal_level(config: configuration.NamespaceConfig) -> int:
    """Level of the terminal output requested by the user."""
    if config.quiet:
        return constants.QUIET_LOGGING_LEVEL
    return max(logging.DEBUG,
               constants.DEFAULT_LOGGING_LEVEL - config.verbose_count * 10)


def setup_log_file_handler(config: configuration.NamespaceConfig, logfile: str,
                           fmt: str) -> logging.Handler:
    """Setup file debug logging.

    :param acmeflow.configuration.NamespaceConfig config: Configuration object
    :param str logfile: path of the log file
    :param str fmt: logging format string

    :raises .Error: if the log file cannot be opened

    :returns: file handler
    :rtype: logging.Handler

    """
    try:
        handler = logging.handlers.RotatingFileHandler(
            logfile, maxBytes=2 ** 20,
            backupCount=config.max_log_backups)
    except OSError as error:
        raise errors.Error('Unable to open log file {0}: {1}'.format(logfile, error))
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(fmt=fmt))
    return handler


class ColoredStreamHandler(logging.StreamHandler):
    """Sends colored logging output to a stream.

    If the specified stream is not a tty, the class works like the
    standard `logging.StreamHandler`. Default red_level is
    `logging.WARNING`.

    :ivar bool colored: True if output should be colored
    :ivar bool red_level: The level at which to output

    """
    def __init__(self, stream: Optional[IO] = None) -> None:
        super().__init__(stream)
        self.colored = (sys.stderr.isatty() if stream is None else
                        stream.isatty())
        self.red_level = logging.WARNING

    def format(self, record: logging.LogRecord) -> str:
        """Formats the string representation of record.

        :param logging.LogRecord record: Record to be formatted

        :returns: Formatted, string representation of record
        :rtype: str

        """
        out = super().format(record)
        if self.colored and record.levelno >= self.red_level:
            return ''.join((ANSI_SGR_RED, out, ANSI_SGR_RESET))
        return out
