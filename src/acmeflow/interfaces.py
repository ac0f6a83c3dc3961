"""Collaborator interfaces consumed by the issuance engine."""
from abc import ABCMeta
from abc import abstractmethod
from typing import Dict
from typing import Optional
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from acmeflow.issuance import CertificateBundle


class KeyStore(metaclass=ABCMeta):
    """Private key storage interface."""

    @abstractmethod
    def load_private_key(self, name: str) -> Optional[bytes]:  # pragma: no cover
        """Load a private key.

        :param str name: Key name, either an account key name or a
            primary domain name.

        :raises .CryptoError: if the key exists but cannot be read

        :returns: PEM encoded key, or ``None`` if there is no such key.
        :rtype: bytes

        """
        raise NotImplementedError()

    @abstractmethod
    def save_private_key(self, name: str, key_pem: bytes) -> None:  # pragma: no cover
        """Persist a private key under ``name``."""
        raise NotImplementedError()


class CSRStore(metaclass=ABCMeta):
    """Storage of the last CSR of every domain."""

    @abstractmethod
    def load_csr(self, domain: str) -> Optional[bytes]:  # pragma: no cover
        """Last PEM encoded CSR of ``domain``, ``None`` if there is none."""
        raise NotImplementedError()

    @abstractmethod
    def save_csr(self, domain: str, csr_pem: bytes) -> None:  # pragma: no cover
        """Remember ``csr_pem`` as the last CSR of ``domain``."""
        raise NotImplementedError()


class ChallengePublisher(metaclass=ABCMeta):
    """Makes challenge validations reachable by the ACME server.

    The interface knows nothing about the transport: an HTTP-01
    publisher writes files under a web root, other challenge types
    would create DNS records, etc.

    """

    @abstractmethod
    def publish(self, domain: str, token: str, validation: str) -> None:  # pragma: no cover
        """Publish ``validation`` for the challenge identified by ``token``.

        :raises .Error: if the validation could not be published

        """
        raise NotImplementedError()

    @abstractmethod
    def unpublish(self, domain: str, token: str) -> None:  # pragma: no cover
        """Remove what `publish` created for ``token``.

        Must not fail if nothing is published.

        """
        raise NotImplementedError()


class CertificateSink(metaclass=ABCMeta):
    """Destination of issued certificates."""

    @abstractmethod
    def save(self, domain: str,
             bundle: 'CertificateBundle') -> Dict[str, str]:  # pragma: no cover
        """Save a certificate bundle.

        :param str domain: Primary domain of the certificate.
        :param .CertificateBundle bundle:

        :returns: Locations of the saved artifacts, keyed by ``cert``,
            ``chain`` and ``fullchain``.
        :rtype: dict

        """
        raise NotImplementedError()
