"""ACME account key lifecycle and registration."""
import hashlib
import logging
from typing import Optional
from typing import Sequence
from typing import Tuple

from cryptography.hazmat.primitives import serialization
import josepy as jose

from acmeflow import client as acme_client
from acmeflow import crypto_util
from acmeflow import errors
from acmeflow import interfaces
from acmeflow import messages

logger = logging.getLogger(__name__)


class Account:
    """ACME protocol registration.

    :ivar .RegistrationResource regr: Registration Resource
    :ivar .JWK key: Authorized Account Key
    :ivar str id: Account key fingerprint, stable across servers.

    """

    def __init__(self, regr: messages.RegistrationResource, key: jose.JWK) -> None:
        self.key = key
        self.regr = regr
        self.id = hashlib.md5(  # nosec
            self.key.key.public_key().public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.SubjectPublicKeyInfo)
        ).hexdigest()

    @property
    def uri(self) -> str:
        """Account URL, used as ``kid`` in signed requests."""
        return self.regr.uri

    @property
    def contact(self) -> Tuple[str, ...]:
        """Contact URIs known to the server."""
        return self.regr.body.contact

    @property
    def terms_of_service_agreed(self) -> bool:
        """Whether the terms of service were agreed to."""
        return bool(self.regr.body.terms_of_service_agreed)

    def __repr__(self) -> str:
        return "<{0}({1}, {2})>".format(
            self.__class__.__name__, self.regr.uri, self.id)

    def __eq__(self, other: object) -> bool:
        return (isinstance(other, self.__class__) and
                self.key == other.key and self.regr == other.regr)


class AccountManager:
    """Owns the account key and the account registered with it.

    :ivar .KeyStore key_store: Where the account key is persisted.
    :ivar str key_name: Name of the account key in ``key_store``, one
        per ACME server.

    """

    def __init__(self, key_store: interfaces.KeyStore, key_name: str,
                 key_type: str = 'rsa', rsa_key_size: int = 4096,
                 elliptic_curve: Optional[str] = 'secp256r1') -> None:
        self.key_store = key_store
        self.key_name = key_name
        self.key_type = key_type
        self.rsa_key_size = rsa_key_size
        self.elliptic_curve = elliptic_curve
        self._key: Optional[jose.JWK] = None

    @property
    def key(self) -> jose.JWK:
        """Account key, see `load_or_create_key`."""
        if self._key is None:
            raise errors.Error('Account key has not been loaded')
        return self._key

    def load_or_create_key(self) -> jose.JWK:
        """Load the account key, generating and saving it if there is none.

        An existing key is never replaced.

        :raises .CryptoError: if the stored key cannot be loaded.

        :rtype: `josepy.JWK`

        """
        key_pem = self.key_store.load_private_key(self.key_name)
        if key_pem is None:
            logger.info('Generating a new %s account key', self.key_type.upper())
            key_pem = crypto_util.make_key(
                bits=self.rsa_key_size, key_type=self.key_type,
                elliptic_curve=self.elliptic_curve)
            self.key_store.save_private_key(self.key_name, key_pem)
        else:
            logger.debug('Using the existing account key %s', self.key_name)
        self._key = crypto_util.load_jwk(key_pem)
        return self._key

    def ensure_account(self, acme: acme_client.ClientV2,
                       contact: Sequence[str] = ()) -> Account:
        """Register the account key, or look up its existing account.

        The same request is sent in both cases: servers answer it with
        the URL of the account already bound to the key, so calling
        this again is an idempotent lookup.

        :param .ClientV2 acme: Client signing with the account key.
        :param contact: Contact URIs (e.g. ``mailto:admin@example.com``).

        :raises .MissingAccountError: if the server sent no account URL.

        :rtype: `Account`

        """
        registration = messages.Registration(
            contact=tuple(contact), terms_of_service_agreed=True)
        regr = acme.new_account(registration)
        logger.info('Using account %s', regr.uri)
        return Account(regr, self.key)
