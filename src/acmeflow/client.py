"""ACME client API."""
import base64
import logging
from typing import Any
from typing import Dict
from typing import Optional
from typing import Sequence
from typing import Union

import josepy as jose
import requests
from requests.adapters import HTTPAdapter

from acmeflow import challenges
from acmeflow import errors
from acmeflow import jws
from acmeflow import messages
from acmeflow import nonce as nonce_lib

logger = logging.getLogger(__name__)

DEFAULT_NETWORK_TIMEOUT = 45
DEFAULT_USER_AGENT = 'acmeflow'


class ClientV2:
    """ACME client for a v2 API.

    One instance holds the whole protocol state of an issuance run: the
    directory, the network (with its nonce and the account it signs
    for). Nothing is shared between instances.

    :ivar messages.Directory directory:
    :ivar .ClientNetwork net: Client network.
    """

    def __init__(self, directory: messages.Directory, net: 'ClientNetwork') -> None:
        """Initialize.

        :param .messages.Directory directory: Directory Resource
        :param .ClientNetwork net: Client network.
        """
        self.directory = directory
        self.net = net

    @classmethod
    def get_directory(cls, url: str, net: 'ClientNetwork') -> messages.Directory:
        """Retrieve the ACME directory (RFC 8555 section 7.1.1).

        :param str url: the URL where the ACME directory is available
        :param ClientNetwork net: the ClientNetwork to use to make the request

        :raises .ProtocolError: if the document is not JSON or a required
            resource is missing.

        :returns: the ACME directory object
        :rtype: messages.Directory
        """
        response = net.get(url, content_type=None)
        try:
            jobj = response.json()
        except ValueError:
            raise errors.ProtocolError('Directory at {0} is not a JSON document'.format(url))
        try:
            return messages.Directory.from_json(jobj)
        except jose.DeserializationError as error:
            raise errors.ProtocolError('Invalid directory at {0}: {1}'.format(url, error))

    def new_account(self, new_account: messages.Registration) -> messages.RegistrationResource:
        """Register, or look up the account of the network key.

        Servers answer ``201 Created`` for a new account and ``200 OK``
        when the key is already registered; both carry the account URL
        in the ``Location`` header.

        :param .Registration new_account:

        :raises .MissingAccountError: if the account URL is missing.

        :returns: Registration Resource, also used from now on to sign
            requests.
        :rtype: `.RegistrationResource`

        """
        response = self._post(self.directory['newAccount'], new_account)
        location = response.headers.get('Location')
        if not location:
            raise errors.MissingAccountError(
                'Server did not return an account URL (HTTP {0})'.format(response.status_code))
        regr = self._regr_from_response(response, uri=location)
        if response.status_code == 200:
            logger.debug('Key is already registered as %s', location)
        self.net.account = regr
        return regr

    def new_order(self, domains: Sequence[str]) -> messages.OrderResource:
        """Request a new Order object from the server.

        :param list domains: DNS names to be certified.

        :returns: The newly created order; authorizations are not fetched.
        :rtype: OrderResource
        """
        identifiers = [messages.Identifier(typ=messages.IDENTIFIER_FQDN, value=domain)
                       for domain in domains]
        order = messages.NewOrder(identifiers=identifiers)
        response = self._post(self.directory['newOrder'], order)
        body = self._order_from_response(response)
        if not body.finalize or body.authorizations is None:
            raise errors.ProtocolError('Order is missing finalize or authorizations')
        return messages.OrderResource(body=body, uri=response.headers.get('Location'))

    def fetch_authorization(self, url: str, identifier: Optional[messages.Identifier] = None
                            ) -> messages.AuthorizationResource:
        """Fetch an Authorization Resource (POST-as-GET).

        :param str url: Authorization URL.
        :param identifier: Identifier the authorization is expected to be
            about, if already known.

        :raises .UnexpectedUpdate: if the identifier changed.

        """
        response = self._post_as_get(url)
        return self._authzr_from_response(response, identifier, url)

    def answer_challenge(self, challb: messages.ChallengeBody,
                         response: challenges.ChallengeResponse) -> messages.ChallengeBody:
        """Answer challenge.

        :param challb: Challenge Resource body.
        :type challb: `.ChallengeBody`

        :param response: Corresponding Challenge response
        :type response: `.challenges.ChallengeResponse`

        :returns: Challenge Resource body as updated by the server.
        :rtype: `.ChallengeBody`

        :raises .UnexpectedUpdate:

        """
        return self._challb_from_response(self._post(challb.uri, response), challb)

    def poll_challenge(self, challb: messages.ChallengeBody) -> messages.ChallengeBody:
        """Fetch the current state of a challenge (POST-as-GET)."""
        return self._challb_from_response(self._post_as_get(challb.uri), challb)

    def finalize(self, orderr: messages.OrderResource, csr_der: bytes) -> messages.OrderResource:
        """Submit the CSR to the order ``finalize`` URL.

        :param OrderResource orderr: Order whose authorizations are valid.
        :param bytes csr_der: DER encoded CSR.

        :raises .FinalizeError: if the server refused the request.

        :returns: Order as updated by the server.
        :rtype: OrderResource
        """
        request = messages.CertificateRequest(csr=csr_der)
        try:
            response = self._post(orderr.body.finalize, request)
        except (messages.Error, errors.ClientError) as error:
            raise errors.FinalizeError(error)
        return orderr.update(body=self._order_from_response(response))

    def poll_order(self, orderr: messages.OrderResource) -> messages.OrderResource:
        """Fetch the current state of an order (POST-as-GET).

        :raises .ProtocolError: if the order URL is unknown.

        """
        if not orderr.uri:
            raise errors.ProtocolError('Order URL is unknown, the order cannot be polled')
        response = self._post_as_get(orderr.uri)
        return orderr.update(body=self._order_from_response(response))

    def fetch_certificate(self, url: str) -> requests.Response:
        """Download the certificate chain (POST-as-GET).

        The response is returned as is: ``202 Accepted`` means the
        certificate is not ready yet.

        """
        return self._post_as_get(url)

    def _post_as_get(self, url: str, **kwargs: Any) -> requests.Response:
        """Send GET request using the POST-as-GET protocol."""
        return self._post(url, None, **kwargs)

    def _post(self, *args: Any, **kwargs: Any) -> requests.Response:
        """Wrapper around self.net.post that adds the newNonce URL.

        This is used to retry the request in case of a badNonce error.

        """
        kwargs.setdefault('new_nonce_url', self.directory['newNonce'])
        return self.net.post(*args, **kwargs)

    @classmethod
    def _json(cls, response: requests.Response) -> Dict[str, Any]:
        try:
            return response.json()
        except ValueError:
            raise errors.ProtocolError(
                'Expected a JSON document from {0}'.format(response.url))

    @classmethod
    def _regr_from_response(cls, response: requests.Response, uri: Optional[str] = None,
                            ) -> messages.RegistrationResource:
        terms_of_service = None
        if 'terms-of-service' in response.links:
            terms_of_service = response.links['terms-of-service']['url']
        # Some servers answer an account lookup with an empty body.
        jobj = cls._json(response) if response.content else {}
        try:
            body = messages.Registration.from_json(jobj)
        except jose.DeserializationError as error:
            raise errors.ProtocolError('Invalid account object: {0}'.format(error))
        return messages.RegistrationResource(
            body=body, uri=response.headers.get('Location', uri),
            terms_of_service=terms_of_service)

    @classmethod
    def _order_from_response(cls, response: requests.Response) -> messages.Order:
        try:
            return messages.Order.from_json(cls._json(response))
        except jose.DeserializationError as error:
            raise errors.ProtocolError('Invalid order object: {0}'.format(error))

    def _authzr_from_response(self, response: requests.Response,
                              identifier: Optional[messages.Identifier] = None,
                              uri: Optional[str] = None) -> messages.AuthorizationResource:
        try:
            body = messages.Authorization.from_json(self._json(response))
        except jose.DeserializationError as error:
            raise errors.ProtocolError('Invalid authorization object: {0}'.format(error))
        authzr = messages.AuthorizationResource(
            body=body, uri=response.headers.get('Location', uri))
        if identifier is not None and authzr.body.identifier != identifier:  # pylint: disable=no-member
            raise errors.UnexpectedUpdate(authzr)
        return authzr

    def _challb_from_response(self, response: requests.Response,
                              challb: messages.ChallengeBody) -> messages.ChallengeBody:
        try:
            updated = messages.ChallengeBody.from_json(self._json(response))
        except jose.DeserializationError as error:
            raise errors.ProtocolError('Invalid challenge object: {0}'.format(error))
        if updated.uri is None:
            updated = updated.update(url=challb.uri)
        elif updated.uri != challb.uri:
            raise errors.UnexpectedUpdate(updated.uri)
        return updated


class ClientNetwork:
    """Wrapper around requests that signs POSTs for authentication.

    Also adds user agent, and handles Content-Type.

    :ivar josepy.JWK key: Account private key.
    :ivar messages.RegistrationResource account: Account object. Required
        for every request but the account creation; set by
        `ClientV2.new_account`.
    :ivar int max_nonce_retries: How many times a request rejected with
        ``badNonce`` is signed again with a fresh nonce.
    """
    JSON_CONTENT_TYPE = 'application/json'
    JOSE_CONTENT_TYPE = 'application/jose+json'
    JSON_ERROR_CONTENT_TYPE = 'application/problem+json'
    REPLAY_NONCE_HEADER = 'Replay-Nonce'

    def __init__(self, key: jose.JWK, account: Optional[messages.RegistrationResource] = None,
                 verify_ssl: bool = True, user_agent: str = DEFAULT_USER_AGENT,
                 timeout: int = DEFAULT_NETWORK_TIMEOUT, max_nonce_retries: int = 1) -> None:
        self.key = key
        self.alg = jws.alg_for_key(key)
        self.account = account
        self.verify_ssl = verify_ssl
        self.max_nonce_retries = max_nonce_retries
        self._nonces = nonce_lib.NonceTracker()
        self.user_agent = user_agent
        self.session = requests.Session()
        self._default_timeout = timeout
        adapter = HTTPAdapter()

        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()

    def __enter__(self) -> 'ClientNetwork':
        return self

    def __exit__(self, *unused_exc_info: Any) -> None:
        self.close()

    def _wrap_in_jws(self, obj: Optional[jose.JSONDeSerializable], nonce: str, url: str) -> str:
        """Wrap `JSONDeSerializable` object in JWS.

        :param josepy.JSONDeSerializable obj: Request body, ``None`` for
            POST-as-GET.
        :param str url: The URL to which this object will be POSTed
        :param str nonce:
        :rtype: str

        """
        # newAccount must not have kid
        kid = self.account.uri if self.account is not None else None
        return jws.sign(obj, self.key, url, nonce, kid=kid).json_dumps(indent=2)

    @classmethod
    def _check_response(cls, response: requests.Response,
                        content_type: Optional[str] = None) -> requests.Response:
        """Check response content and its type.

        .. note::
           Checking is not strict: wrong server response ``Content-Type``
           HTTP header is ignored if response is an expected JSON object.

        :param str content_type: Expected Content-Type response header.
            If JSON is expected and not present in server response, this
            function will raise an error. Otherwise, wrong Content-Type
            is ignored, but logged.

        :raises .messages.Error: If server response body
            carries HTTP Problem (https://datatracker.ietf.org/doc/html/rfc7807).
        :raises .ClientError: In case of other networking errors.

        """
        response_ct = response.headers.get('Content-Type')
        # Strip parameters from the media-type (rfc2616#section-3.7)
        if response_ct:
            response_ct = response_ct.split(';')[0].strip()
        try:
            jobj = response.json()
        except ValueError:
            jobj = None

        if not response.ok:
            if jobj is not None:
                if response_ct != cls.JSON_ERROR_CONTENT_TYPE:
                    logger.debug(
                        'Ignoring wrong Content-Type (%r) for JSON Error',
                        response_ct)
                try:
                    raise messages.Error.from_json(jobj)
                except jose.DeserializationError as error:
                    # Couldn't deserialize JSON object
                    raise errors.ClientError((response, error))
            else:
                # response is not JSON object
                raise errors.ClientError(
                    'HTTP {0} from {1}: {2}'.format(
                        response.status_code, response.url, response.text))
        else:
            if jobj is not None and response_ct != cls.JSON_CONTENT_TYPE:
                logger.debug(
                    'Ignoring wrong Content-Type (%r) for JSON decodable '
                    'response', response_ct)

            if content_type == cls.JSON_CONTENT_TYPE and jobj is None:
                raise errors.ClientError(f'Unexpected response Content-Type: {response_ct}')

        return response

    def _send_request(self, method: str, url: str, *args: Any, **kwargs: Any) -> requests.Response:
        """Send HTTP request.

        Makes sure that `verify_ssl` is respected. Logs request and
        response (with headers). For allowed parameters please see
        `requests.request`.

        :param str method: method for the new `requests.Request` object
        :param str url: URL for the new `requests.Request` object

        :raises .ClientError: in case of any transport problem

        :returns: HTTP Response
        :rtype: `requests.Response`

        """
        if method == "POST":
            logger.debug('Sending POST request to %s:\n%s',
                          url, kwargs['data'])
        else:
            logger.debug('Sending %s request to %s.', method, url)
        kwargs['verify'] = self.verify_ssl
        kwargs.setdefault('headers', {})
        kwargs['headers'].setdefault('User-Agent', self.user_agent)
        kwargs.setdefault('timeout', self._default_timeout)
        try:
            response = self.session.request(method, url, *args, **kwargs)
        except requests.exceptions.RequestException as error:
            raise errors.ClientError('Requesting {0}: {1}'.format(url, error))

        debug_content: Union[bytes, str]
        if "Accept" in kwargs["headers"]:
            debug_content = base64.b64encode(response.content)
        else:
            # We set response.encoding so response.text knows the response is
            # UTF-8 encoded instead of trying to guess the encoding that was
            # used which is error prone.
            response.encoding = "utf-8"
            debug_content = response.text
        logger.debug('Received response:\nHTTP %d\n%s\n\n%s',
                     response.status_code,
                     "\n".join("{0}: {1}".format(k, v)
                                for k, v in response.headers.items()),
                     debug_content)
        return response

    def head(self, *args: Any, **kwargs: Any) -> requests.Response:
        """Send HEAD request without checking the response.

        Note, that `_check_response` is not called, as it is expected
        that status code other than successfully 2xx will be returned, or
        messages.Error will be raised by the server.

        """
        return self._send_request('HEAD', *args, **kwargs)

    def get(self, url: str, content_type: Optional[str] = JSON_CONTENT_TYPE,
            **kwargs: Any) -> requests.Response:
        """Send GET request and check response."""
        return self._check_response(
            self._send_request('GET', url, **kwargs), content_type=content_type)

    def _add_nonce(self, response: requests.Response) -> None:
        if self.REPLAY_NONCE_HEADER in response.headers:
            self._nonces.observe(response.headers[self.REPLAY_NONCE_HEADER])
        else:
            raise errors.MissingNonce(response.headers)

    def _get_nonce(self, url: str, new_nonce_url: Optional[str]) -> str:
        if not self._nonces:
            logger.debug('Requesting fresh nonce')
            if new_nonce_url is None:
                response = self.head(url)
            else:
                # request a new nonce from the acme newNonce endpoint
                response = self._check_response(self.head(new_nonce_url), content_type=None)
            self._add_nonce(response)
        return self._nonces.next_nonce()

    def post(self, *args: Any, **kwargs: Any) -> requests.Response:
        """POST object wrapped in `.JWS` and check response.

        If the server responded with a badNonce error, the same request
        is signed again with a fresh nonce, at most `max_nonce_retries`
        times.

        """
        retries = 0
        while True:
            try:
                return self._post_once(*args, **kwargs)
            except messages.Error as error:
                if error.code != 'badNonce' or retries >= self.max_nonce_retries:
                    raise
                retries += 1
                logger.debug('Retrying request after error:\n%s', error)
                self._nonces.clear()

    def _post_once(self, url: str, obj: Optional[jose.JSONDeSerializable],
                   content_type: str = JOSE_CONTENT_TYPE, **kwargs: Any) -> requests.Response:
        new_nonce_url = kwargs.pop('new_nonce_url', None)
        data = self._wrap_in_jws(obj, self._get_nonce(url, new_nonce_url), url)
        kwargs.setdefault('headers', {'Content-Type': content_type})
        response = self._send_request('POST', url, data=data, **kwargs)
        response = self._check_response(response, content_type=content_type)
        self._add_nonce(response)
        return response
