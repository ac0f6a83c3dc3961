"""Tests for acmeflow.cli."""
import argparse
import os
import sys
import tempfile
import unittest
from unittest import mock

import pytest

from acmeflow import constants


class FlagDefaultTest(unittest.TestCase):
    """Tests for acmeflow.cli.flag_default."""

    def test_copy(self):
        from acmeflow.cli import flag_default
        domains = flag_default('domains')
        domains.append('example.com')
        assert flag_default('domains') == []


class AddDomainsTest(unittest.TestCase):
    """Tests for acmeflow.cli.add_domains."""

    def test_normalization(self):
        from acmeflow.cli import add_domains
        namespace = argparse.Namespace(domains=['example.com'])
        added = add_domains(namespace, 'Example.COM., www.example.com,,')
        assert added == ['example.com', 'www.example.com']
        assert namespace.domains == ['example.com', 'www.example.com']


class TypeTest(unittest.TestCase):
    """Tests for the argument types."""

    def test_positive_int(self):
        from acmeflow.cli import positive_int
        assert positive_int('3') == 3
        for value in ('0', '-1', 'x'):
            with pytest.raises(argparse.ArgumentTypeError):
                positive_int(value)

    def test_nonnegative_float(self):
        from acmeflow.cli import nonnegative_float
        assert nonnegative_float('0') == 0
        assert nonnegative_float('0.5') == 0.5
        for value in ('-0.1', 'x'):
            with pytest.raises(argparse.ArgumentTypeError):
                nonnegative_float(value)


class PrepareAndParseArgsTest(unittest.TestCase):
    """Tests for acmeflow.cli.prepare_and_parse_args."""

    def setUp(self):
        self.tempdir = tempfile.mkdtemp()
        self.addCleanup(os.rmdir, self.tempdir)
        self.base = ['-d', 'example.com', '-w', '/var/www', '--config-dir', self.tempdir]

    @classmethod
    def _parse(cls, args):
        from acmeflow.cli import prepare_and_parse_args
        with mock.patch.dict(os.environ, {}, clear=True):
            return prepare_and_parse_args(args)

    def test_defaults(self):
        config = self._parse(self.base)
        assert config.domains == ['example.com']
        assert config.webroot_path == '/var/www'
        assert config.config_dir == self.tempdir
        assert config.server == constants.LETSENCRYPT_SERVER
        assert config.challenge_type == 'http-01'
        assert config.self_check
        assert config.reuse_key
        assert config.max_nonce_retries == 1
        assert config.rsa_key_size == 4096
        assert config.verbose_count == 0

    def test_domains(self):
        config = self._parse(self.base + ['-d', 'www.example.com,Example.com',
                                          '--domain', 'mail.example.com'])
        assert config.domains == ['example.com', 'www.example.com', 'mail.example.com']

    def test_flags(self):
        config = self._parse(self.base + [
            '-vv', '--staging', '-m', 'a@example.com', '--contact', 'tel:+1',
            '--key-type', 'ecdsa', '--elliptic-curve', 'secp384r1', '--new-key',
            '--reuse-csr', '--no-self-check', '--poll-interval', '0.5',
            '--max-poll-attempts', '5', '--issuance-poll-attempts', '6',
            '--no-verify-ssl', '--network-timeout', '10', '--organization', 'Example'])
        assert config.verbose_count == 2
        assert config.server == constants.STAGING_URI
        assert config.contact == ['tel:+1', 'mailto:a@example.com']
        assert config.key_type == 'ecdsa'
        assert config.elliptic_curve == 'secp384r1'
        assert not config.reuse_key
        assert config.reuse_csr
        assert not config.self_check
        assert config.poll_interval == 0.5
        assert config.max_poll_attempts == 5
        assert config.issuance_poll_attempts == 6
        assert config.no_verify_ssl
        assert config.network_timeout == 10
        assert config.organization == 'Example'

    def test_config_file(self):
        with tempfile.NamedTemporaryFile('w', suffix='.ini', delete=False) as f:
            f.write('email = admin@example.com\npoll-interval = 3\n')
        self.addCleanup(os.remove, f.name)
        config = self._parse(self.base + ['-c', f.name])
        assert config.email == 'admin@example.com'
        assert config.poll_interval == 3

    def test_env_var(self):
        from acmeflow.cli import prepare_and_parse_args
        with mock.patch.dict(os.environ, {'ACMEFLOW_EMAIL': 'env@example.com'}, clear=True):
            config = prepare_and_parse_args(self.base)
        assert config.email == 'env@example.com'

    def test_missing_domains(self):
        with pytest.raises(SystemExit):
            self._parse(['-w', '/var/www'])

    def test_missing_webroot(self):
        with pytest.raises(SystemExit):
            self._parse(['-d', 'example.com'])

    def test_invalid_config(self):
        with pytest.raises(SystemExit):
            self._parse(self.base + ['--rsa-key-size', '1024'])
        with pytest.raises(SystemExit):
            self._parse(self.base + ['-d', '*.example.com'])

    def test_invalid_type(self):
        with pytest.raises(SystemExit):
            self._parse(self.base + ['--max-poll-attempts', '0'])
        with pytest.raises(SystemExit):
            self._parse(self.base + ['--key-type', 'dsa'])


if __name__ == '__main__':
    sys.exit(pytest.main(sys.argv[1:] + [__file__]))  # pragma: no cover
