"""ACME AuthHandler."""
import logging
import threading
from typing import Iterable
from typing import List
from typing import Optional

import josepy as jose

from acmeflow import challenges
from acmeflow import client
from acmeflow import errors
from acmeflow import interfaces
from acmeflow import messages
from acmeflow import polling

logger = logging.getLogger(__name__)


def select_challenge(challbs: Iterable[messages.ChallengeBody], typ: str,
                     domain: str) -> messages.ChallengeBody:
    """Pick the first challenge of type ``typ``.

    :param challbs: Challenges offered by an authorization.
    :param str typ: Wanted challenge type, e.g. ``http-01``.
    :param str domain: Domain of the authorization, for error messages.

    :raises .ChallengeUnavailableError: if no such challenge is offered,
        or if it is not a type this package can answer.

    :rtype: `.ChallengeBody`

    """
    offered = []
    for challb in challbs:
        offered.append(challb.chall.typ)
        if challb.chall.typ != typ:
            continue
        if not isinstance(challb.chall, challenges.KeyAuthorizationChallenge):
            break
        return challb
    raise errors.ChallengeUnavailableError(domain, typ, offered)


class AuthHandler:
    """ACME Authorization Handler for a client.

    Satisfies the authorizations of an order one after the other.

    :ivar acmeflow.client.ClientV2 acme: ACME client API.
    :ivar josepy.JWK account_key: Key the key authorizations are bound to.
    :ivar .ChallengePublisher publisher: Publishes the validations.
    :ivar str challenge_type: Challenge type to answer.
    :ivar .PollPolicy policy: Challenge polling policy.
    :ivar bool self_check: Whether published validations are fetched
        back before the server is asked to check them.
    :ivar threading.Event cancel: Cancellation token.

    """
    def __init__(self, acme: client.ClientV2, account_key: jose.JWK,
                 publisher: interfaces.ChallengePublisher,
                 challenge_type: str = challenges.HTTP01.typ,
                 policy: Optional[polling.PollPolicy] = None, self_check: bool = True,
                 cancel: Optional[threading.Event] = None,
                 self_check_timeout: int = 30) -> None:
        self.acme = acme
        self.account_key = account_key
        self.publisher = publisher
        self.challenge_type = challenge_type
        self.policy = policy if policy is not None else polling.PollPolicy()
        self.self_check = self_check
        self.cancel = cancel
        self.self_check_timeout = self_check_timeout

    def handle_authorizations(self, orderr: messages.OrderResource
                              ) -> List[messages.AuthorizationResource]:
        """Retrieve and satisfy every authorization of an order.

        :param acmeflow.messages.OrderResource orderr: Newly created order.

        :returns: list of all validated authorizations
        :rtype: List

        :raises .AuthorizationError: If any authorization cannot be validated.
        :raises .TimeoutError: If the server did not validate a challenge in time.
        """
        urls = orderr.body.authorizations
        if not urls:
            raise errors.AuthorizationError('No authorization to handle.')

        authzrs = []
        for url in urls:
            authzr = self.acme.fetch_authorization(url)
            domain = authzr.body.identifier.value
            status = authzr.body.status
            if status == messages.STATUS_VALID:
                logger.info('Authorization for %s is already valid', domain)
            elif status in (messages.STATUS_PENDING, messages.STATUS_PROCESSING):
                authzr = self._satisfy(authzr)
            else:
                raise errors.AuthorizationError(
                    'Authorization for {0} is {1}'.format(domain, status.name))
            authzrs.append(authzr)
        return authzrs

    def _satisfy(self, authzr: messages.AuthorizationResource
                 ) -> messages.AuthorizationResource:
        domain = authzr.body.identifier.value
        challb = select_challenge(authzr.body.challenges, self.challenge_type, domain)
        chall = challb.chall
        if not chall.good_token:
            raise errors.ProtocolError(
                'Unsafe challenge token for {0}: {1!r}'.format(domain, chall.token))
        response, validation = chall.response_and_validation(self.account_key)

        logger.info('Performing %s challenge for %s', chall.typ, domain)
        self.publisher.publish(domain, chall.token, validation)
        try:
            if self.self_check:
                self._self_check(domain, challb, response)
            updated = self.acme.answer_challenge(challb, response)
            logger.info('Waiting for verification of %s...', domain)
            self._wait_for_validation(domain, updated)
        finally:
            self.publisher.unpublish(domain, chall.token)

        logger.info('Authorization for %s is valid', domain)
        return authzr.update(body=authzr.body.update(status=messages.STATUS_VALID))

    def _self_check(self, domain: str, challb: messages.ChallengeBody,
                    response: challenges.KeyAuthorizationChallengeResponse) -> None:
        if not response.simple_verify(challb.chall, domain, self.account_key.public_key(),
                                      timeout=self.self_check_timeout):
            raise errors.SelfCheckError(
                'Self check failed: the validation published for {0} could not be '
                'fetched back from {1}'.format(domain, challb.chall.uri(domain)))
        logger.debug('Self check for %s succeeded', domain)

    def _wait_for_validation(self, domain: str, challb: messages.ChallengeBody) -> None:
        if self._outcome(domain, challb) is not None:
            return

        def check() -> Optional[messages.ChallengeBody]:
            return self._outcome(domain, self.acme.poll_challenge(challb))

        polling.poll(check, self.policy, self.cancel,
                     what='validation of {0}'.format(domain))

    @classmethod
    def _outcome(cls, domain: str, challb: messages.ChallengeBody
                 ) -> Optional[messages.ChallengeBody]:
        """The challenge if it is valid, ``None`` while it is being processed."""
        if challb.status == messages.STATUS_INVALID:
            logger.info('Challenge failed for domain %s', domain)
            raise errors.ChallengeFailedError(domain, challb.error)
        if challb.status == messages.STATUS_VALID:
            return challb
        return None
