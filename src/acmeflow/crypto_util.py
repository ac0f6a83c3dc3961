"""Crypto utilities.

Key generation and loading, and certificate signing requests.

"""
import logging
from typing import List
from typing import Optional
from typing import Sequence
from typing import Union

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.hazmat.primitives.serialization import NoEncryption
from cryptography.hazmat.primitives.serialization import PrivateFormat
from cryptography.hazmat.primitives.serialization import PublicFormat
from cryptography.x509.oid import NameOID
import josepy as jose

from acmeflow import errors

logger = logging.getLogger(__name__)

PrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]

SUPPORTED_CURVES = ('SECP256R1', 'SECP384R1', 'SECP521R1')


def make_key(bits: int = 4096, key_type: str = "rsa",
             elliptic_curve: Optional[str] = None) -> bytes:
    """Generate PEM encoded RSA|EC key.

    :param int bits: Number of bits if key_type=rsa. At least 2048 for RSA.
    :param str key_type: The type of key to generate, but be rsa or ecdsa
    :param str elliptic_curve: The elliptic curve to use.

    :raises .CryptoError: on invalid parameters.

    :returns: new RSA or ECDSA key in PEM (PKCS#8) form
    :rtype: bytes

    """
    key: PrivateKey
    if key_type == 'rsa':
        if bits < 2048:
            raise errors.CryptoError("Unsupported RSA key length: {}".format(bits))
        key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
    elif key_type == 'ecdsa':
        if not elliptic_curve:
            raise errors.CryptoError("When key_type == ecdsa, elliptic_curve must be set.")
        name = elliptic_curve.upper()
        if name not in SUPPORTED_CURVES:
            raise errors.CryptoError("Unsupported elliptic curve: {}".format(elliptic_curve))
        try:
            key = ec.generate_private_key(curve=getattr(ec, name)())
        except UnsupportedAlgorithm as error:
            raise errors.CryptoError(str(error))
    else:
        raise errors.CryptoError(
            "Invalid key_type specified: {}.  Use [rsa|ecdsa]".format(key_type))
    return key.private_bytes(
        encoding=Encoding.PEM,
        format=PrivateFormat.PKCS8,
        encryption_algorithm=NoEncryption()
    )


def load_private_key(private_key_pem: bytes) -> PrivateKey:
    """Load a PEM encoded RSA or EC private key.

    :raises .CryptoError: if the key cannot be parsed or is of another type.

    """
    try:
        key = serialization.load_pem_private_key(private_key_pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as error:
        raise errors.CryptoError("Unable to load private key: {0}".format(error))
    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise errors.CryptoError("Invalid private key type: {0}".format(type(key).__name__))
    return key


def load_jwk(private_key_pem: bytes) -> jose.JWK:
    """Load a PEM encoded private key as a `josepy.JWK`."""
    key = load_private_key(private_key_pem)
    if isinstance(key, rsa.RSAPrivateKey):
        return jose.JWKRSA(key=key)
    return jose.JWKEC(key=key)


def public_key_pem(private_key_pem: bytes) -> bytes:
    """PEM encoded public key (SubjectPublicKeyInfo) of a private key."""
    return load_private_key(private_key_pem).public_key().public_bytes(
        Encoding.PEM, PublicFormat.SubjectPublicKeyInfo)


def make_csr(private_key_pem: bytes, domains: Sequence[str],
             country: Optional[str] = None, state: Optional[str] = None,
             organization: Optional[str] = None) -> bytes:
    """Generate a CSR for ``domains``.

    The first domain is used as the subject Common Name, all of them
    are listed in the subjectAltName extension.

    :param bytes private_key_pem: Private key, in PEM format.
    :param list domains: DNS names, primary name first.
    :param str country: Optional subject countryName.
    :param str state: Optional subject stateOrProvinceName.
    :param str organization: Optional subject organizationName.

    :raises .CryptoError: if the CSR cannot be built.

    :returns: PEM-encoded Certificate Signing Request.
    :rtype: bytes

    """
    if not domains:
        raise errors.CryptoError("At least one domain is required to build a CSR")
    private_key = load_private_key(private_key_pem)

    attributes = [x509.NameAttribute(NameOID.COMMON_NAME, domains[0])]
    if country:
        attributes.append(x509.NameAttribute(NameOID.COUNTRY_NAME, country))
    if state:
        attributes.append(x509.NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, state))
    if organization:
        attributes.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization))

    try:
        builder = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(x509.Name(attributes))
            .add_extension(
                x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]),
                critical=False,
            )
        )
        csr = builder.sign(private_key, hashes.SHA256())
    except ValueError as error:
        raise errors.CryptoError("Unable to build CSR: {0}".format(error))
    return csr.public_bytes(Encoding.PEM)


def csr_pem_to_der(csr_pem: bytes) -> bytes:
    """Convert a PEM encoded CSR to DER.

    :raises .CryptoError: if ``csr_pem`` is not a valid CSR.

    """
    try:
        csr = x509.load_pem_x509_csr(csr_pem)
    except ValueError as error:
        raise errors.CryptoError("Invalid CSR: {0}".format(error))
    return csr.public_bytes(Encoding.DER)


def get_names_from_csr(csr_pem: bytes) -> List[str]:
    """Common Name followed by the other subjectAltName DNS names."""
    csr = x509.load_pem_x509_csr(csr_pem)
    names = [attr.value for attr in csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)]
    try:
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return [str(name) for name in names]
    names.extend(name for name in san.value.get_values_for_type(x509.DNSName)
                 if name not in names)
    return [str(name) for name in names]
