"""acmeflow user-supplied configuration."""
import argparse
import os
from typing import Any
from typing import List

from acmeflow import __version__
from acmeflow import constants
from acmeflow import errors
from acmeflow import polling
from acmeflow import storage
from acmeflow import util


class NamespaceConfig:
    """Configuration wrapper around :class:`argparse.Namespace`.

    Every attribute of the namespace is readable (and writable) on the
    wrapper; the properties below are derived from them.

    :ivar namespace: Namespace typically produced by
        :meth:`argparse.ArgumentParser.parse_args`.
    :type namespace: :class:`argparse.Namespace`

    """

    def __init__(self, namespace: argparse.Namespace) -> None:
        self.namespace: argparse.Namespace
        # Avoid recursion loop because of the delegation defined in __setattr__
        object.__setattr__(self, 'namespace', namespace)

        self.namespace.config_dir = os.path.abspath(
            os.path.expanduser(self.namespace.config_dir))

        # Check command line parameters sanity, and error out in case of problem.
        _check_config_sanity(self)

    def __getattr__(self, name: str) -> Any:
        return getattr(self.namespace, name)

    def __setattr__(self, name: str, value: Any) -> None:
        setattr(self.namespace, name, value)

    @property
    def server(self) -> str:
        """ACME server URL, the staging server if ``staging`` is set."""
        if self.namespace.staging:
            return constants.STAGING_URI
        return self.namespace.server

    @property
    def directory_url(self) -> str:
        """ACME Directory Resource URI."""
        return util.directory_url(self.server)

    @property
    def server_path(self) -> str:
        """File path friendly form of ``server``."""
        return util.server_path(self.directory_url)

    @property
    def account_key_name(self) -> str:
        """Key store name of the account key used with ``server``."""
        return storage.account_key_name(self.server_path)

    @property
    def contact(self) -> List[str]:
        """Contact URIs sent on registration.

        ``email`` may hold several comma separated addresses.

        """
        contact = list(self.namespace.contact or [])
        if self.namespace.email:
            contact.extend('mailto:' + email.strip()
                           for email in self.namespace.email.split(',') if email.strip())
        return contact

    @property
    def user_agent(self) -> str:
        """User-Agent header of every request."""
        if self.namespace.user_agent:
            return self.namespace.user_agent
        return 'acmeflow/{0}'.format(__version__)

    @property
    def reuse_key(self) -> bool:
        """Whether the existing key of a domain is kept."""
        return self.namespace.reuse_key and not self.namespace.new_key

    def poll_policy(self) -> polling.PollPolicy:
        """Policy used while waiting for challenge validation."""
        return polling.PollPolicy(interval=self.namespace.poll_interval,
                                  max_attempts=self.namespace.max_poll_attempts)

    def issuance_poll_policy(self) -> polling.PollPolicy:
        """Policy used while waiting for the order and the certificate."""
        return polling.PollPolicy(interval=self.namespace.poll_interval,
                                  max_attempts=self.namespace.issuance_poll_attempts)


def _check_config_sanity(config: NamespaceConfig) -> None:
    """Validate command line options and raise an error if
    requirements are not met.

    :param config: NamespaceConfig instance holding user configuration

    :raises .ConfigurationError: on invalid values

    """
    namespace = config.namespace
    if namespace.key_type not in ('rsa', 'ecdsa'):
        raise errors.ConfigurationError(
            'Invalid key type: {0}'.format(namespace.key_type))
    if namespace.key_type == 'rsa' and namespace.rsa_key_size < 2048:
        raise errors.ConfigurationError(
            'RSA keys must be at least 2048 bits long')
    if namespace.poll_interval < 0:
        raise errors.ConfigurationError('The poll interval must not be negative')
    for name in ('max_poll_attempts', 'issuance_poll_attempts'):
        if getattr(namespace, name) < 1:
            raise errors.ConfigurationError(
                '{0} must be at least 1'.format(name.replace('_', ' ')))
    if namespace.max_nonce_retries < 0:
        raise errors.ConfigurationError('The nonce retry count must not be negative')
    for domain in namespace.domains or []:
        _check_domain(domain)


def _check_domain(domain: str) -> None:
    if not domain or domain.startswith('.') or '..' in domain or '/' in domain:
        raise errors.ConfigurationError('Invalid domain name: {0!r}'.format(domain))
    if domain.startswith('*.'):
        raise errors.ConfigurationError(
            'Wildcard domains need dns-01, which is not supported: {0}'.format(domain))
