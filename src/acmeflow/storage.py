"""File system persistence of keys, CSRs and certificates.

Layout, rooted at the configuration directory::

    _account/<server path>/private.pem    account key, one per ACME server
    _account/<server path>/public.pem
    <domain>/private.pem                  certificate key
    <domain>/public.pem
    <domain>/last.csr
    <domain>/cert.pem
    <domain>/chain.pem
    <domain>/fullchain.pem

"""
import logging
import os
from typing import Dict
from typing import Optional

from acmeflow import crypto_util
from acmeflow import errors
from acmeflow import interfaces
from acmeflow import util
from acmeflow.issuance import CertificateBundle

logger = logging.getLogger(__name__)

ACCOUNT_DIR = '_account'
PRIVATE_KEY_FILE = 'private.pem'
PUBLIC_KEY_FILE = 'public.pem'
CSR_FILE = 'last.csr'
CERT_FILE = 'cert.pem'
CHAIN_FILE = 'chain.pem'
FULLCHAIN_FILE = 'fullchain.pem'


def account_key_name(server_path: str) -> str:
    """Key name of the account key used with a server."""
    return ACCOUNT_DIR + '/' + server_path


class FileStorage(interfaces.KeyStore, interfaces.CSRStore, interfaces.CertificateSink):
    """Keys, CSRs and certificates under a single directory.

    :ivar str config_dir: Root directory.

    """

    def __init__(self, config_dir: str) -> None:
        self.config_dir = config_dir

    def _dir(self, name: str) -> str:
        parts = name.split('/')
        if any(part in ('', '.', '..') for part in parts):
            raise errors.Error('Invalid storage name: {0!r}'.format(name))
        return os.path.join(self.config_dir, *parts)

    def _read(self, path: str) -> Optional[bytes]:
        try:
            with open(path, 'rb') as f:
                return f.read()
        except FileNotFoundError:
            return None

    def load_private_key(self, name: str) -> Optional[bytes]:
        path = os.path.join(self._dir(name), PRIVATE_KEY_FILE)
        try:
            return self._read(path)
        except OSError as error:
            raise errors.CryptoError('Unable to read {0}: {1}'.format(path, error))

    def save_private_key(self, name: str, key_pem: bytes) -> None:
        directory = self._dir(name)
        util.make_or_verify_dir(directory, 0o700)
        util.safe_write(os.path.join(directory, PRIVATE_KEY_FILE), key_pem, chmod=0o600)
        util.safe_write(os.path.join(directory, PUBLIC_KEY_FILE),
                        crypto_util.public_key_pem(key_pem))
        logger.debug('Saved key %s', name)

    def load_csr(self, domain: str) -> Optional[bytes]:
        return self._read(os.path.join(self._dir(domain), CSR_FILE))

    def save_csr(self, domain: str, csr_pem: bytes) -> None:
        directory = self._dir(domain)
        util.make_or_verify_dir(directory, 0o700)
        util.safe_write(os.path.join(directory, CSR_FILE), csr_pem)

    def save(self, domain: str, bundle: CertificateBundle) -> Dict[str, str]:
        directory = self._dir(domain)
        util.make_or_verify_dir(directory, 0o700)
        locations = {
            'cert': os.path.join(directory, CERT_FILE),
            'chain': os.path.join(directory, CHAIN_FILE),
            'fullchain': os.path.join(directory, FULLCHAIN_FILE),
        }
        util.safe_write(locations['cert'], bundle.cert_pem)
        util.safe_write(locations['chain'], bundle.chain_pem)
        util.safe_write(locations['fullchain'], bundle.fullchain_pem)
        logger.info('Certificate for %s saved at %s', domain, locations['fullchain'])
        return locations
