"""Anti-replay nonce tracking."""
import logging
import re
from typing import Optional

from acmeflow import errors

logger = logging.getLogger(__name__)

NONCE_REGEX = re.compile(r'^[A-Za-z0-9_-]+$')


class NonceTracker:
    """Most recently observed nonce of one client session.

    Every signed request consumes the tracked nonce and every response
    replaces it, so a value is never used twice.

    """

    def __init__(self) -> None:
        self._nonce: Optional[str] = None

    def __bool__(self) -> bool:
        return self._nonce is not None

    def observe(self, nonce: str) -> None:
        """Track ``nonce``, replacing any older value.

        :raises .BadNonce: if ``nonce`` is not base64url encoded.

        """
        if not NONCE_REGEX.match(nonce):
            raise errors.BadNonce(nonce, ValueError('not base64url encoded'))
        logger.debug('Storing nonce: %s', nonce)
        self._nonce = nonce

    def next_nonce(self) -> str:
        """Consume the tracked nonce.

        :raises .MissingNonce: if no nonce is tracked.

        """
        if self._nonce is None:
            raise errors.MissingNonce({})
        nonce, self._nonce = self._nonce, None
        return nonce

    def clear(self) -> None:
        """Forget the tracked nonce."""
        self._nonce = None
