"""ACME engine errors."""
import typing
from typing import Any
from typing import Mapping
from typing import Optional

# We import acmeflow.messages only during type check to avoid circular dependencies. Type
# references to acmeflow.messages.* must be quoted to be lazily initialized.
if typing.TYPE_CHECKING:
    from acmeflow import messages  # pragma: no cover


class Error(Exception):
    """Generic ACME engine error.

    :ivar bool retryable: Whether repeating the whole issuance run later
        may succeed without any change on the client side.

    """
    retryable = False


class ProtocolError(Error):
    """The server sent malformed data or omitted mandatory data."""


class UnexpectedUpdate(ProtocolError):
    """Unexpected update error."""


class NonceError(ProtocolError):
    """Server response nonce error."""


class BadNonce(NonceError):
    """Bad nonce error."""
    def __init__(self, nonce: str, error: Exception, *args: Any) -> None:
        super().__init__(*args)
        self.nonce = nonce
        self.error = error

    def __str__(self) -> str:
        return 'Invalid nonce ({0!r}): {1}'.format(self.nonce, self.error)


class MissingNonce(NonceError):
    """Missing nonce error.

    According to RFC 8555 an "ACME server MUST include an
    Replay-Nonce header field in each successful response to a POST it
    provides to a client (...)".

    :ivar headers: Mapping of HTTP headers

    """
    def __init__(self, headers: Mapping[str, str], *args: Any) -> None:
        super().__init__(*args)
        self.headers = dict(headers)

    def __str__(self) -> str:
        return ('Server response did not include a replay '
                'nonce, headers: {0} (This may be a service outage)'.format(
                    self.headers))


class ClientError(Error):
    """HTTP level error that did not carry an ACME problem document."""


class CryptoError(Error):
    """Key generation, key loading, signing or CSR building failed."""


class MissingAccountError(Error):
    """No account URL could be recovered from the server."""


class AuthorizationError(Error):
    """Authorization error."""


class ChallengeUnavailableError(AuthorizationError):
    """The server did not offer the configured challenge type."""

    def __init__(self, domain: str, typ: str, offered: typing.Sequence[str]) -> None:
        self.domain = domain
        self.typ = typ
        self.offered = tuple(offered)
        super().__init__()

    def __str__(self) -> str:
        return '{0} challenge for {1} is not available (offered: {2})'.format(
            self.typ, self.domain, ', '.join(self.offered) or 'none')


class ChallengeFailedError(AuthorizationError):
    """The server reported the challenge as invalid.

    :ivar str domain: Domain being validated.
    :ivar error: Problem document attached to the challenge, if any.
    :vartype error: `acmeflow.messages.Error`

    """

    def __init__(self, domain: str, error: Optional['messages.Error'] = None) -> None:
        self.domain = domain
        self.error = error
        super().__init__()

    def __str__(self) -> str:
        if self.error is None:
            return 'Challenge for {0} failed. No further information was provided ' \
                   'by the server.'.format(self.domain)
        return 'Challenge for {0} failed: {1}'.format(self.domain, self.error)


class SelfCheckError(AuthorizationError):
    """The published key authorization could not be fetched back locally."""


class TimeoutError(Error):  # pylint: disable=redefined-builtin
    """Error for when polling a challenge, an order or a certificate times out."""
    retryable = True


class Cancelled(Error):
    """The issuance run was cancelled between two poll attempts."""


class FinalizeError(Error):
    """The server refused to finalize the order."""

    def __init__(self, error: Any) -> None:
        """Initialize.

        :param error: The problem provided by the server, or the raw
            response text if there was none.
        """
        self.error = error
        super().__init__()

    def __str__(self) -> str:
        return 'Order finalization failed: {0}'.format(self.error)


class IssuanceError(Error):
    """The certificate could not be downloaded after finalization."""

    def __init__(self, error: Any) -> None:
        """Initialize.

        :param error: The problem or status provided by the server.
        """
        self.error = error
        super().__init__()

    def __str__(self) -> str:
        return "Can't get certificate: {0}".format(self.error)


class ParseError(Error):
    """The certificate body did not contain a usable certificate chain."""


class PublishError(Error):
    """A challenge validation could not be published or removed."""


class ConfigurationError(Error):
    """Invalid configuration."""
