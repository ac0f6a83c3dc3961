"""acmeflow main entry point."""
import datetime
import logging
import sys
import threading
from typing import Dict
from typing import List
from typing import Optional

from acmeflow import account
from acmeflow import auth_handler
from acmeflow import cli
from acmeflow import client
from acmeflow import configuration
from acmeflow import errors
from acmeflow import interfaces
from acmeflow import issuance
from acmeflow import log
from acmeflow import storage
from acmeflow import webroot

logger = logging.getLogger(__name__)


def obtain_certificate(config: configuration.NamespaceConfig,
                       key_store: interfaces.KeyStore,
                       csr_store: interfaces.CSRStore,
                       publisher: interfaces.ChallengePublisher,
                       cancel: Optional[threading.Event] = None,
                       deadline: Optional[datetime.datetime] = None
                       ) -> issuance.CertificateBundle:
    """Run one issuance for ``config.domains``.

    Every call works on its own network session, so several runs may
    execute in parallel threads.

    :param .NamespaceConfig config: Configuration.
    :param .KeyStore key_store: Storage of the account and domain keys.
    :param .CSRStore csr_store: Storage of the last CSRs.
    :param .ChallengePublisher publisher: Publishes the validations.
    :param threading.Event cancel: Set it to abort the run at the next
        poll attempt.
    :param datetime.datetime deadline: No poll attempt is made after it,
        nor after the expiry of the order. Naive values are local time.

    :raises .Error: if the run failed, nothing was issued.

    :returns: The issued certificate.
    :rtype: `.CertificateBundle`

    """
    manager = account.AccountManager(
        key_store, config.account_key_name, key_type=config.key_type,
        rsa_key_size=config.rsa_key_size, elliptic_curve=config.elliptic_curve)
    # The key is needed before anything is sent.
    key = manager.load_or_create_key()

    with client.ClientNetwork(key, verify_ssl=not config.no_verify_ssl,
                              user_agent=config.user_agent,
                              timeout=config.network_timeout,
                              max_nonce_retries=config.max_nonce_retries) as net:
        directory = client.ClientV2.get_directory(config.directory_url, net)
        acme = client.ClientV2(directory, net)
        manager.ensure_account(acme, config.contact)

        logger.info('Requesting a certificate for %s', ', '.join(config.domains))
        orderr = acme.new_order(config.domains)
        run_deadline = issuance.order_deadline(orderr, deadline)

        handler = auth_handler.AuthHandler(
            acme, key, publisher, challenge_type=config.challenge_type,
            policy=config.poll_policy().with_deadline(run_deadline),
            self_check=config.self_check,
            cancel=cancel, self_check_timeout=config.self_check_timeout)
        orderr = orderr.update(authorizations=handler.handle_authorizations(orderr))

        issuer = issuance.Issuer(
            acme, key_store, csr_store,
            policy=config.issuance_poll_policy().with_deadline(run_deadline),
            key_type=config.key_type, rsa_key_size=config.rsa_key_size,
            elliptic_curve=config.elliptic_curve, country=config.country,
            state=config.state, organization=config.organization, cancel=cancel)
        return issuer.issue(orderr, config.domains, reuse_csr=config.reuse_csr,
                            reuse_key=config.reuse_key)


def run(config: configuration.NamespaceConfig) -> Dict[str, str]:
    """Obtain a certificate using the file storage and the web root.

    :returns: Locations of the saved certificate files.
    :rtype: dict

    """
    file_storage = storage.FileStorage(config.config_dir)
    publisher = webroot.WebrootPublisher(config.webroot_path)
    bundle = obtain_certificate(config, file_storage, file_storage, publisher)
    return file_storage.save(config.domains[0], bundle)


def main(cli_args: Optional[List[str]] = None) -> int:
    """Run acmeflow.

    :param cli_args: command line to acmeflow, defaults to ``sys.argv[1:]``
    :type cli_args: `list` of `str`

    :returns: value for `sys.exit` about the exit status of acmeflow
    :rtype: int

    """
    if cli_args is None:
        cli_args = sys.argv[1:]
    config = cli.prepare_and_parse_args(cli_args)

    try:
        log.setup_logging(config)
        locations = run(config)
    except errors.Error as error:
        logger.debug('Exiting with error', exc_info=True)
        logger.error('%s: %s', error.__class__.__name__, error)
        if error.retryable:
            logger.error('This error may be temporary, try again later.')
        return 1

    if not config.quiet:
        print('Certificate saved at: {0}'.format(locations['fullchain']))
    return 0
