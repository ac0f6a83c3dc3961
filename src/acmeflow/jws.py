"""ACME-specific JWS.

The JWS implementation in josepy only implements the base JOSE standard. In
order to support the new header fields defined in ACME, this module defines some
ACME-specific classes that layer on top of josepy.
"""
import logging
from typing import Any
from typing import Optional

import josepy as jose

from acmeflow import errors

logger = logging.getLogger(__name__)

_EC_ALGORITHMS = {
    'secp256r1': jose.ES256,
    'secp384r1': jose.ES384,
    'secp521r1': jose.ES512,
}


class Header(jose.Header):
    """ACME-specific JOSE Header. Implements nonce, kid, and url.

    The nonce is kept as the opaque string the server handed out; it is
    validated when it is observed, see `acmeflow.nonce.NonceTracker`.
    """
    nonce: Optional[str] = jose.field('nonce', omitempty=True)
    kid: Optional[str] = jose.field('kid', omitempty=True)  # type: ignore[assignment]
    url: Optional[str] = jose.field('url', omitempty=True)


class Signature(jose.Signature):
    """ACME-specific Signature. Uses ACME-specific Header for customer fields."""
    __slots__ = jose.Signature._orig_slots  # type: ignore[attr-defined]  # pylint: disable=protected-access,no-member

    header_cls = Header
    header: Header = jose.field(
        'header', omitempty=True, default=header_cls(),
        decoder=header_cls.from_json)


class JWS(jose.JWS):
    """ACME-specific JWS. Includes nonce, url, and kid in protected header."""
    signature_cls = Signature
    __slots__ = jose.JWS._orig_slots  # type: ignore[attr-defined]  # pylint: disable=protected-access

    @classmethod
    # type: ignore[override]  # pylint: disable=arguments-differ
    def sign(cls, payload: bytes, key: jose.JWK, alg: jose.JWASignature, nonce: Optional[str],
             url: Optional[str] = None, kid: Optional[str] = None) -> jose.JWS:
        # jwk and kid are mutually exclusive, so only include a jwk field
        # if kid is not provided.
        include_jwk = kid is None
        return super().sign(payload, key=key, alg=alg,
                            protect=frozenset(['nonce', 'url', 'kid', 'jwk', 'alg']),
                            nonce=nonce, url=url, kid=kid,
                            include_jwk=include_jwk)


def alg_for_key(key: jose.JWK) -> jose.JWASignature:
    """Signature algorithm matching the type of ``key``.

    :param josepy.JWK key: Account (private) key.

    :raises .CryptoError: if there is no ACME algorithm for the key.

    :returns: ``RS256`` for RSA keys, ``ES256``/``ES384``/``ES512`` for
        P-256/P-384/P-521 keys.
    :rtype: `josepy.JWASignature`

    """
    if isinstance(key, jose.JWKRSA):
        return jose.RS256
    if isinstance(key, jose.JWKEC):
        curve = key.key.curve.name
        try:
            return _EC_ALGORITHMS[curve]
        except KeyError:
            raise errors.CryptoError('Unsupported elliptic curve: {0}'.format(curve))
    raise errors.CryptoError('Unsupported key type: {0}'.format(type(key).__name__))


def encode_payload(obj: Optional[jose.JSONDeSerializable]) -> bytes:
    """Canonical JSON serialization of a request body.

    ``None`` (POST-as-GET) yields an empty payload.

    """
    if obj is None:
        return b''
    return obj.json_dumps(sort_keys=True, separators=(',', ':')).encode()


def sign(payload: Optional[jose.JSONDeSerializable], key: jose.JWK, url: str,
         nonce: str, kid: Optional[str] = None) -> JWS:
    """Sign an ACME request.

    :param payload: Request body, ``None`` for POST-as-GET.
    :param josepy.JWK key: Account private key.
    :param str url: Exact URL the request is sent to.
    :param str nonce: Fresh anti-replay nonce.
    :param str kid: Account URL. Without it the public key is embedded
        in the protected header instead.

    :raises .CryptoError: if the key cannot be used for signing.

    :rtype: `JWS`

    """
    alg = alg_for_key(key)
    encoded = encode_payload(payload)
    logger.debug('JWS payload:\n%s', encoded)
    kwargs: Any = {'nonce': nonce, 'url': url, 'kid': kid}
    try:
        return JWS.sign(encoded, key=key, alg=alg, **kwargs)
    except (TypeError, ValueError) as error:
        raise errors.CryptoError('Unable to sign request for {0}: {1}'.format(url, error))
