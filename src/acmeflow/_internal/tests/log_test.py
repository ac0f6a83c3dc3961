"""Tests for acmeflow.log."""
import io
import logging
import logging.handlers
import os
import shutil
import sys
import tempfile
import unittest
from unittest import mock

import pytest

from acmeflow import constants
from acmeflow import errors
from acmeflow._internal.tests import test_util


class SetupLoggingTest(unittest.TestCase):
    """Tests for acmeflow.log.setup_logging."""

    def setUp(self):
        self.tempdir = tempfile.mkdtemp()
        self.root_logger = logging.getLogger()
        self.old_level = self.root_logger.level
        self.old_handlers = list(self.root_logger.handlers)

    def tearDown(self):
        for handler in self.root_logger.handlers:
            if handler not in self.old_handlers:
                self.root_logger.removeHandler(handler)
                handler.close()
        self.root_logger.setLevel(self.old_level)
        shutil.rmtree(self.tempdir)

    @classmethod
    def _call(cls, config):
        from acmeflow.log import setup_logging
        return setup_logging(config)

    def test_terminal_only(self):
        handlers = self._call(test_util.make_config())
        assert len(handlers) == 1
        assert handlers[0].level == constants.DEFAULT_LOGGING_LEVEL
        assert self.root_logger.level == logging.DEBUG
        assert handlers[0] in self.root_logger.handlers

    def test_log_file(self):
        log_file = os.path.join(self.tempdir, 'acmeflow.log')
        handlers = self._call(test_util.make_config(log_file=log_file, max_log_backups=3))
        assert len(handlers) == 2
        file_handler = handlers[1]
        assert isinstance(file_handler, logging.handlers.RotatingFileHandler)
        assert file_handler.level == logging.DEBUG
        assert file_handler.backupCount == 3

        logging.getLogger('acmeflow.test').debug('protocol details')
        file_handler.flush()
        with open(log_file) as f:
            assert 'DEBUG:acmeflow.test:protocol details' in f.read()

    def test_log_file_error(self):
        log_file = os.path.join(self.tempdir, 'missing', 'acmeflow.log')
        with pytest.raises(errors.Error):
            self._call(test_util.make_config(log_file=log_file))


class TerminalLevelTest(unittest.TestCase):
    """Tests for acmeflow.log.terminal_level."""

    @classmethod
    def _call(cls, **kwargs):
        from acmeflow.log import terminal_level
        return terminal_level(test_util.make_config(**kwargs))

    def test_default(self):
        assert self._call() == logging.WARNING

    def test_verbose(self):
        assert self._call(verbose_count=1) == logging.INFO
        assert self._call(verbose_count=2) == logging.DEBUG
        assert self._call(verbose_count=5) == logging.DEBUG

    def test_quiet(self):
        assert self._call(quiet=True, verbose_count=2) == logging.ERROR


class ColoredStreamHandlerTest(unittest.TestCase):
    """Tests for acmeflow.log.ColoredStreamHandler."""

    def setUp(self):
        from acmeflow.log import ColoredStreamHandler
        self.stream = io.StringIO()
        self.stream.isatty = lambda: True
        self.handler = ColoredStreamHandler(self.stream)
        self.logger = logging.getLogger('acmeflow.log_test')
        self.logger.setLevel(logging.DEBUG)
        self.logger.addHandler(self.handler)
        self.logger.propagate = False

    def tearDown(self):
        self.logger.removeHandler(self.handler)
        self.logger.propagate = True

    def test_format(self):
        msg = 'I did a thing'
        self.logger.debug(msg)
        assert self.stream.getvalue() == '{0}\n'.format(msg)

    def test_format_and_red_level(self):
        from acmeflow import log
        msg = 'I did another thing'
        self.handler.red_level = logging.DEBUG
        self.logger.debug(msg)

        assert self.stream.getvalue() == \
            '{0}{1}{2}\n'.format(log.ANSI_SGR_RED, msg, log.ANSI_SGR_RESET)

    def test_not_a_tty(self):
        from acmeflow.log import ColoredStreamHandler
        stream = mock.MagicMock()
        stream.isatty.return_value = False
        assert not ColoredStreamHandler(stream).colored


if __name__ == '__main__':
    sys.exit(pytest.main(sys.argv[1:] + [__file__]))  # pragma: no cover
