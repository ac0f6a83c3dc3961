"""Order finalization and certificate download."""
import datetime
import logging
import re
import threading
from typing import List
from typing import NamedTuple
from typing import Optional
from typing import Sequence
from typing import Union

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding

from acmeflow import client
from acmeflow import crypto_util
from acmeflow import errors
from acmeflow import interfaces
from acmeflow import messages
from acmeflow import polling

logger = logging.getLogger(__name__)

CERT_PEM_REGEX = re.compile(
    b"""-----BEGIN CERTIFICATE-----\r?
.+?\r?
-----END CERTIFICATE-----\r?\n?""",
    re.DOTALL # DOTALL (/s) because the base64text may include newlines
)


class CertificateBundle:
    """Issued certificate and its chain, PEM encoded.

    :ivar str cert_pem: Leaf certificate.
    :ivar str chain_pem: Intermediate certificates, in the server's order.
    :ivar str fullchain_pem: ``cert_pem`` followed by ``chain_pem``.

    """

    def __init__(self, cert_pem: str, chain_pem: str, fullchain_pem: str) -> None:
        self.cert_pem = cert_pem
        self.chain_pem = chain_pem
        self.fullchain_pem = fullchain_pem

    @property
    def chain(self) -> List[str]:
        """Intermediate certificates, one PEM block each."""
        return [cert.decode() for cert in CERT_PEM_REGEX.findall(self.chain_pem.encode())]

    def __eq__(self, other: object) -> bool:
        return (isinstance(other, self.__class__) and
                self.fullchain_pem == other.fullchain_pem)

    def __repr__(self) -> str:
        return '<{0}(chain of {1})>'.format(self.__class__.__name__, len(self.chain))


def parse_certificate_body(body: Union[str, bytes]) -> CertificateBundle:
    """Split a PEM certificate chain into leaf and chain.

    Every certificate is parsed and re-encoded, with the effect of
    normalizing any encoding variations (e.g. CRLF, whitespace).

    :param body: Concatenated PEM certificates, leaf first.

    :raises .ParseError: if there is no certificate, or if one of them
        cannot be parsed.

    :rtype: `CertificateBundle`

    """
    if isinstance(body, str):
        body = body.encode()
    blocks = CERT_PEM_REGEX.findall(body)
    if not blocks:
        raise errors.ParseError('No certificate found in the server response')
    try:
        certs = [x509.load_pem_x509_certificate(block).public_bytes(Encoding.PEM).decode()
                 for block in blocks]
    except ValueError as error:
        raise errors.ParseError('Unable to parse certificate: {0}'.format(error))
    return CertificateBundle(certs[0], ''.join(certs[1:]), ''.join(certs))


def order_deadline(orderr: messages.OrderResource,
                   deadline: Optional[datetime.datetime] = None
                   ) -> Optional[datetime.datetime]:
    """Earliest of ``deadline`` and the expiry of ``orderr``.

    Polling past the expiry of an order is pointless: the server
    discards it.

    :raises .IssuanceError: if the order has already expired.

    """
    if deadline is not None:
        deadline = polling.aware_utc(deadline)
    expires = orderr.body.expires
    if expires is None:
        return deadline
    if expires <= polling.utcnow():
        raise errors.IssuanceError('order {0} expired at {1}'.format(
            orderr.uri, expires.isoformat()))
    if deadline is None or expires < deadline:
        return expires
    return deadline


class SigningRequest(NamedTuple):
    """Key and CSR submitted to finalize an order."""
    key_pem: bytes
    csr_pem: bytes
    new_key: bool
    new_csr: bool


class Issuer:
    """Finalizes validated orders and downloads the certificates.

    :ivar acmeflow.client.ClientV2 acme: ACME client API.
    :ivar .KeyStore key_store: Storage of the per-domain keys.
    :ivar .CSRStore csr_store: Storage of the last CSR of every domain.
    :ivar .PollPolicy policy: Order and certificate polling policy.
    :ivar threading.Event cancel: Cancellation token.

    """

    def __init__(self, acme: client.ClientV2, key_store: interfaces.KeyStore,
                 csr_store: interfaces.CSRStore, policy: Optional[polling.PollPolicy] = None,
                 key_type: str = 'rsa', rsa_key_size: int = 4096,
                 elliptic_curve: Optional[str] = 'secp256r1', country: Optional[str] = None,
                 state: Optional[str] = None, organization: Optional[str] = None,
                 cancel: Optional[threading.Event] = None) -> None:
        self.acme = acme
        self.key_store = key_store
        self.csr_store = csr_store
        self.policy = policy if policy is not None else polling.PollPolicy()
        self.key_type = key_type
        self.rsa_key_size = rsa_key_size
        self.elliptic_curve = elliptic_curve
        self.country = country
        self.state = state
        self.organization = organization
        self.cancel = cancel

    def issue(self, orderr: messages.OrderResource, domains: Sequence[str],
              reuse_csr: bool = False, reuse_key: bool = True) -> CertificateBundle:
        """Finalize ``orderr`` and download its certificate.

        A new key or CSR is stored only once the certificate has been
        parsed, so a failed run leaves the stored key untouched.

        :param .OrderResource orderr: Order whose authorizations are all valid.
        :param list domains: Domains of the order, primary domain first.
        :param bool reuse_csr: Submit the last CSR of the primary domain
            again, if it covers exactly ``domains``.
        :param bool reuse_key: Keep the existing key of the primary domain.

        :raises .CryptoError: if the key or the CSR cannot be built.
        :raises .FinalizeError: if the server refused to finalize.
        :raises .IssuanceError: if the certificate could not be downloaded.
        :raises .ParseError: if the downloaded chain is unusable.

        :rtype: `CertificateBundle`

        """
        request = self.prepare_csr(domains, reuse_csr=reuse_csr, reuse_key=reuse_key)
        logger.info('Finalizing order for %s', ', '.join(domains))
        orderr = self.acme.finalize(orderr, crypto_util.csr_pem_to_der(request.csr_pem))
        certificate_url = self._certificate_url(orderr)
        logger.info('Downloading certificate from %s', certificate_url)
        body = self._download(certificate_url)
        bundle = parse_certificate_body(body)
        logger.debug('Received a certificate with a chain of %d', len(bundle.chain))
        self.save_signing_request(domains[0], request)
        return bundle

    def prepare_csr(self, domains: Sequence[str], reuse_csr: bool = False,
                    reuse_key: bool = True) -> SigningRequest:
        """Key and CSR of the primary domain, created as needed.

        New keys and CSRs are only kept in memory, see
        `save_signing_request`.

        :rtype: `SigningRequest`

        """
        if not domains:
            raise errors.CryptoError('At least one domain is required to build a CSR')
        domain = domains[0]
        key_pem = self.key_store.load_private_key(domain) if reuse_key else None
        new_key = key_pem is None
        if new_key:
            logger.info('Generating a new %s key for %s', self.key_type.upper(), domain)
            key_pem = crypto_util.make_key(
                bits=self.rsa_key_size, key_type=self.key_type,
                elliptic_curve=self.elliptic_curve)
            if reuse_csr:
                logger.warning('The last CSR of %s cannot be reused with a new key', domain)
                reuse_csr = False

        if reuse_csr:
            csr_pem = self.csr_store.load_csr(domain)
            if csr_pem is not None and self._covers(csr_pem, domains):
                logger.info('Reusing the last CSR of %s', domain)
                return SigningRequest(key_pem, csr_pem, new_key=False, new_csr=False)
            logger.debug('No reusable CSR for %s', domain)

        csr_pem = crypto_util.make_csr(
            key_pem, domains, country=self.country, state=self.state,
            organization=self.organization)
        return SigningRequest(key_pem, csr_pem, new_key=new_key, new_csr=True)

    def save_signing_request(self, domain: str, request: SigningRequest) -> None:
        """Persist what `prepare_csr` created for ``domain``."""
        if request.new_key:
            self.key_store.save_private_key(domain, request.key_pem)
        if request.new_csr:
            self.csr_store.save_csr(domain, request.csr_pem)

    @classmethod
    def _covers(cls, csr_pem: bytes, domains: Sequence[str]) -> bool:
        try:
            names = crypto_util.get_names_from_csr(csr_pem)
        except ValueError as error:
            logger.warning('Ignoring unreadable CSR: %s', error)
            return False
        return bool(names) and names[0] == domains[0] and set(names) == set(domains)

    def _certificate_url(self, orderr: messages.OrderResource) -> str:
        url = self._order_outcome(orderr)
        if url is not None:
            return url

        def check() -> Optional[str]:
            return self._order_outcome(self.acme.poll_order(orderr))

        logger.info('Waiting for the order to be processed...')
        return polling.poll(check, self.policy, self.cancel, what='order processing')

    @classmethod
    def _order_outcome(cls, orderr: messages.OrderResource) -> Optional[str]:
        """Certificate URL of a processed order, ``None`` while it is processing."""
        body = orderr.body
        if body.status == messages.STATUS_INVALID:
            raise errors.IssuanceError(body.error or 'order is invalid')
        if body.certificate:
            return body.certificate
        if body.status == messages.STATUS_VALID:
            raise errors.ProtocolError('Valid order without a certificate URL')
        return None

    def _download(self, url: str) -> str:
        def check() -> Optional[str]:
            try:
                response = self.acme.fetch_certificate(url)
            except (messages.Error, errors.ClientError) as error:
                raise errors.IssuanceError(error)
            if response.status_code == 202:
                logger.debug('Certificate is not ready yet')
                return None
            if response.status_code == 200:
                return response.text
            raise errors.IssuanceError(
                'unexpected HTTP {0} from {1}'.format(response.status_code, url))

        return polling.poll(check, self.policy, self.cancel, what='certificate')
