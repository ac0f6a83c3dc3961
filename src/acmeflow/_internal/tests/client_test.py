"""Tests for acmeflow.client."""
import json
import sys
import unittest
from unittest import mock

import josepy as jose
import pytest
import requests

from acmeflow import challenges
from acmeflow import errors
from acmeflow import messages
from acmeflow._internal.tests import test_util

KEY = test_util.load_rsa_jwk()

DIRECTORY = messages.Directory.from_json({
    'newNonce': 'https://acme.test/new-nonce',
    'newAccount': 'https://acme.test/new-account',
    'newOrder': 'https://acme.test/new-order',
})

ACCOUNT_URL = 'https://acme.test/acct/1'
ORDER_URL = 'https://acme.test/order/1'
AUTHZ_URL = 'https://acme.test/authz/1'
CHALL_URL = 'https://acme.test/chall/1'
FINALIZE_URL = 'https://acme.test/order/1/finalize'

ORDER_JOBJ = {
    'status': 'pending',
    'identifiers': [{'type': 'dns', 'value': 'example.com'}],
    'authorizations': [AUTHZ_URL],
    'finalize': FINALIZE_URL,
}


def _jws_jobj(call):
    return json.loads(call[1]['data'])


def _protected(call):
    return json.loads(jose.b64decode(_jws_jobj(call)['protected']).decode())


class ClientV2Test(unittest.TestCase):
    """Tests for acmeflow.client.ClientV2."""

    def setUp(self):
        from acmeflow.client import ClientV2
        self.net = mock.MagicMock()
        self.net.account = None
        self.client = ClientV2(DIRECTORY, self.net)
        self.identifier = messages.Identifier(
            typ=messages.IDENTIFIER_FQDN, value='example.com')

    def test_get_directory(self):
        from acmeflow.client import ClientV2
        self.net.get.return_value = test_util.response(jobj=DIRECTORY.to_partial_json())
        directory = ClientV2.get_directory('https://acme.test/dir', self.net)
        assert directory.newNonce == 'https://acme.test/new-nonce'
        self.net.get.assert_called_once_with('https://acme.test/dir', content_type=None)

    def test_get_directory_not_json(self):
        from acmeflow.client import ClientV2
        self.net.get.return_value = test_util.response(text='<html></html>')
        with pytest.raises(errors.ProtocolError):
            ClientV2.get_directory('https://acme.test/dir', self.net)

    def test_get_directory_missing_resource(self):
        from acmeflow.client import ClientV2
        self.net.get.return_value = test_util.response(jobj={'newNonce': 'x'})
        with pytest.raises(errors.ProtocolError) as error:
            ClientV2.get_directory('https://acme.test/dir', self.net)
        assert 'newAccount' in str(error.value)

    def test_new_account_created(self):
        self.net.post.return_value = test_util.response(
            201, jobj={'status': 'valid', 'contact': ['mailto:a@example.com']},
            headers={'Location': ACCOUNT_URL})
        regr = self.client.new_account(messages.Registration(
            contact=('mailto:a@example.com',), terms_of_service_agreed=True))
        assert regr.uri == ACCOUNT_URL
        assert regr.body.contact == ('mailto:a@example.com',)
        assert self.net.account is regr
        self.net.post.assert_called_once_with(
            'https://acme.test/new-account', mock.ANY,
            new_nonce_url='https://acme.test/new-nonce')

    def test_new_account_existing(self):
        self.net.post.return_value = test_util.response(
            200, jobj={'status': 'valid'}, headers={'Location': ACCOUNT_URL})
        regr = self.client.new_account(messages.Registration())
        assert regr.uri == ACCOUNT_URL
        assert self.net.account is regr

    def test_new_account_empty_body(self):
        self.net.post.return_value = test_util.response(
            200, headers={'Location': ACCOUNT_URL})
        assert self.client.new_account(messages.Registration()).uri == ACCOUNT_URL

    def test_new_account_no_location(self):
        self.net.post.return_value = test_util.response(201, jobj={'status': 'valid'})
        with pytest.raises(errors.MissingAccountError):
            self.client.new_account(messages.Registration())
        assert self.net.account is None

    def test_new_account_terms_of_service(self):
        self.net.post.return_value = test_util.response(
            201, jobj={}, headers={
                'Location': ACCOUNT_URL,
                'Link': '<https://acme.test/terms>;rel="terms-of-service"'})
        regr = self.client.new_account(messages.Registration())
        assert regr.terms_of_service == 'https://acme.test/terms'

    def test_new_order(self):
        self.net.post.return_value = test_util.response(
            201, jobj=ORDER_JOBJ, headers={'Location': ORDER_URL})
        orderr = self.client.new_order(['example.com'])
        assert orderr.uri == ORDER_URL
        assert orderr.body.authorizations == (AUTHZ_URL,)
        assert orderr.body.finalize == FINALIZE_URL
        payload = self.net.post.call_args[0][1]
        assert list(payload.identifiers) == [self.identifier]

    def test_new_order_without_location(self):
        self.net.post.return_value = test_util.response(201, jobj=ORDER_JOBJ)
        assert self.client.new_order(['example.com']).uri is None

    def test_new_order_missing_fields(self):
        jobj = dict(ORDER_JOBJ)
        del jobj['finalize']
        self.net.post.return_value = test_util.response(201, jobj=jobj)
        with pytest.raises(errors.ProtocolError):
            self.client.new_order(['example.com'])

    def test_fetch_authorization(self):
        self.net.post.return_value = test_util.response(jobj={
            'identifier': {'type': 'dns', 'value': 'example.com'},
            'status': 'pending',
            'challenges': [{'type': 'http-01', 'url': CHALL_URL, 'token': 'tok'}],
        })
        authzr = self.client.fetch_authorization(AUTHZ_URL, self.identifier)
        assert authzr.uri == AUTHZ_URL
        assert authzr.body.status == messages.STATUS_PENDING
        self.net.post.assert_called_once_with(
            AUTHZ_URL, None, new_nonce_url='https://acme.test/new-nonce')

    def test_fetch_authorization_other_identifier(self):
        self.net.post.return_value = test_util.response(jobj={
            'identifier': {'type': 'dns', 'value': 'other.com'},
            'status': 'pending',
            'challenges': [],
        })
        with pytest.raises(errors.UnexpectedUpdate):
            self.client.fetch_authorization(AUTHZ_URL, self.identifier)

    def test_fetch_authorization_not_json(self):
        self.net.post.return_value = test_util.response(text='nope')
        with pytest.raises(errors.ProtocolError):
            self.client.fetch_authorization(AUTHZ_URL)

    def test_answer_challenge(self):
        challb = messages.ChallengeBody(chall=challenges.HTTP01(token='tok'), url=CHALL_URL)
        response = challb.chall.response(KEY)
        self.net.post.return_value = test_util.response(jobj={
            'type': 'http-01', 'token': 'tok', 'url': CHALL_URL, 'status': 'processing'})
        updated = self.client.answer_challenge(challb, response)
        assert updated.status == messages.STATUS_PROCESSING
        self.net.post.assert_called_once_with(
            CHALL_URL, response, new_nonce_url='https://acme.test/new-nonce')

    def test_answer_challenge_without_url_in_response(self):
        challb = messages.ChallengeBody(chall=challenges.HTTP01(token='tok'), url=CHALL_URL)
        self.net.post.return_value = test_util.response(jobj={
            'type': 'http-01', 'token': 'tok', 'status': 'pending'})
        updated = self.client.answer_challenge(challb, challb.chall.response(KEY))
        assert updated.uri == CHALL_URL

    def test_answer_challenge_other_url(self):
        challb = messages.ChallengeBody(chall=challenges.HTTP01(token='tok'), url=CHALL_URL)
        self.net.post.return_value = test_util.response(jobj={
            'type': 'http-01', 'token': 'tok', 'url': 'https://acme.test/chall/2'})
        with pytest.raises(errors.UnexpectedUpdate):
            self.client.answer_challenge(challb, challb.chall.response(KEY))

    def test_poll_challenge(self):
        challb = messages.ChallengeBody(chall=challenges.HTTP01(token='tok'), url=CHALL_URL)
        self.net.post.return_value = test_util.response(jobj={
            'type': 'http-01', 'token': 'tok', 'url': CHALL_URL, 'status': 'valid'})
        assert self.client.poll_challenge(challb).status == messages.STATUS_VALID
        assert self.net.post.call_args[0] == (CHALL_URL, None)

    def test_finalize(self):
        orderr = messages.OrderResource(
            body=messages.Order.from_json(ORDER_JOBJ), uri=ORDER_URL)
        self.net.post.return_value = test_util.response(
            jobj=dict(ORDER_JOBJ, status='processing'))
        updated = self.client.finalize(orderr, b'csr-der')
        assert updated.body.status == messages.STATUS_PROCESSING
        assert updated.uri == ORDER_URL
        url, request = self.net.post.call_args[0]
        assert url == FINALIZE_URL
        assert request.to_partial_json() == {'csr': jose.encode_b64jose(b'csr-der')}

    def test_finalize_refused(self):
        orderr = messages.OrderResource(body=messages.Order.from_json(ORDER_JOBJ))
        self.net.post.side_effect = test_util.problem('badCSR', detail='short key')
        with pytest.raises(errors.FinalizeError) as error:
            self.client.finalize(orderr, b'csr-der')
        assert 'short key' in str(error.value)

    def test_finalize_transport_error(self):
        orderr = messages.OrderResource(body=messages.Order.from_json(ORDER_JOBJ))
        self.net.post.side_effect = errors.ClientError('HTTP 500')
        with pytest.raises(errors.FinalizeError):
            self.client.finalize(orderr, b'csr-der')

    def test_poll_order(self):
        orderr = messages.OrderResource(
            body=messages.Order.from_json(ORDER_JOBJ), uri=ORDER_URL)
        self.net.post.return_value = test_util.response(jobj=dict(
            ORDER_JOBJ, status='valid', certificate='https://acme.test/cert/1'))
        updated = self.client.poll_order(orderr)
        assert updated.body.certificate == 'https://acme.test/cert/1'
        assert self.net.post.call_args[0] == (ORDER_URL, None)

    def test_poll_order_without_url(self):
        orderr = messages.OrderResource(body=messages.Order.from_json(ORDER_JOBJ))
        with pytest.raises(errors.ProtocolError):
            self.client.poll_order(orderr)
        self.net.post.assert_not_called()

    def test_fetch_certificate(self):
        self.net.post.return_value = mock.sentinel.response
        assert self.client.fetch_certificate('https://acme.test/cert/1') is \
            mock.sentinel.response
        assert self.net.post.call_args[0] == ('https://acme.test/cert/1', None)


class ClientNetworkTest(unittest.TestCase):
    """Tests for acmeflow.client.ClientNetwork."""

    def setUp(self):
        from acmeflow.client import ClientNetwork
        self.net = ClientNetwork(key=KEY, user_agent='acmeflow-test', timeout=7)
        self.net.session = mock.MagicMock()
        self.request = self.net.session.request

    def _nonce_response(self, nonce):
        return test_util.response(200, headers={'Replay-Nonce': nonce})

    def test_init(self):
        from acmeflow.client import ClientNetwork
        assert self.net.alg is jose.RS256
        assert self.net.verify_ssl is True
        assert ClientNetwork(test_util.load_ec_jwk()).alg is jose.ES256

    def test_init_unsupported_key(self):
        from acmeflow.client import ClientNetwork
        with pytest.raises(errors.CryptoError):
            ClientNetwork(jose.JWKOct(key=b'secret'))

    def test_context_manager(self):
        with self.net as net:
            assert net is self.net
        self.net.session.close.assert_called_once_with()

    def test_send_request(self):
        self.request.return_value = test_util.response(text='hi')
        self.net.get('https://acme.test/x', content_type=None)
        self.request.assert_called_once_with(
            'GET', 'https://acme.test/x', verify=True, timeout=7,
            headers={'User-Agent': 'acmeflow-test'})

    def test_send_request_transport_error(self):
        self.request.side_effect = requests.exceptions.ConnectionError('refused')
        with pytest.raises(errors.ClientError):
            self.net.get('https://acme.test/x')

    def test_get_expects_json(self):
        self.request.return_value = test_util.response(text='not json')
        with pytest.raises(errors.ClientError):
            self.net.get('https://acme.test/x')

    def test_check_response_problem(self):
        self.request.return_value = test_util.response(
            403, jobj={'type': 'urn:ietf:params:acme:error:unauthorized', 'detail': 'no'},
            headers={'Content-Type': 'application/problem+json'})
        with pytest.raises(messages.Error) as error:
            self.net.get('https://acme.test/x')
        assert error.value.code == 'unauthorized'

    def test_check_response_not_ok_not_json(self):
        self.request.return_value = test_util.response(500, text='boom')
        with pytest.raises(errors.ClientError) as error:
            self.net.get('https://acme.test/x')
        assert '500' in str(error.value)

    def test_check_response_ok_with_charset(self):
        self.request.return_value = test_util.response(
            jobj={'a': 1}, headers={'Content-Type': 'application/json; charset=utf-8'})
        assert self.net.get('https://acme.test/x').json() == {'a': 1}

    def test_post_fetches_nonce_first(self):
        self.request.side_effect = [
            self._nonce_response('nonce1'),
            test_util.response(201, jobj={}, headers={'Replay-Nonce': 'nonce2'}),
        ]
        self.net.post('https://acme.test/new-account', messages.Registration(),
                      new_nonce_url='https://acme.test/new-nonce')
        head, post = self.request.call_args_list
        assert head[0] == ('HEAD', 'https://acme.test/new-nonce')
        assert post[0] == ('POST', 'https://acme.test/new-account')
        protected = _protected(post)
        assert protected['nonce'] == 'nonce1'
        assert protected['url'] == 'https://acme.test/new-account'
        assert 'jwk' in protected
        assert 'kid' not in protected
        assert post[1]['headers']['Content-Type'] == 'application/jose+json'

    def test_post_reuses_response_nonce(self):
        self.request.side_effect = [
            self._nonce_response('nonce1'),
            test_util.response(200, jobj={}, headers={'Replay-Nonce': 'nonce2'}),
            test_util.response(200, jobj={}, headers={'Replay-Nonce': 'nonce3'}),
        ]
        self.net.post('https://acme.test/a', None, new_nonce_url='https://acme.test/new-nonce')
        self.net.post('https://acme.test/b', None, new_nonce_url='https://acme.test/new-nonce')
        assert self.request.call_count == 3
        assert _protected(self.request.call_args_list[2])['nonce'] == 'nonce2'

    def test_post_uses_kid_once_registered(self):
        self.net.account = messages.RegistrationResource(
            body=messages.Registration(), uri=ACCOUNT_URL)
        self.request.side_effect = [
            self._nonce_response('nonce1'),
            test_util.response(200, jobj={}, headers={'Replay-Nonce': 'nonce2'}),
        ]
        self.net.post(ORDER_URL, None, new_nonce_url='https://acme.test/new-nonce')
        protected = _protected(self.request.call_args_list[1])
        assert protected['kid'] == ACCOUNT_URL
        assert 'jwk' not in protected

    def test_post_as_get_has_empty_payload(self):
        self.request.side_effect = [
            self._nonce_response('nonce1'),
            test_util.response(200, jobj={}, headers={'Replay-Nonce': 'nonce2'}),
        ]
        self.net.post(ORDER_URL, None, new_nonce_url='https://acme.test/new-nonce')
        assert _jws_jobj(self.request.call_args_list[1])['payload'] == ''

    def test_post_head_on_url_without_new_nonce_url(self):
        self.request.side_effect = [
            self._nonce_response('nonce1'),
            test_util.response(200, jobj={}, headers={'Replay-Nonce': 'nonce2'}),
        ]
        self.net.post(ORDER_URL, None)
        assert self.request.call_args_list[0][0] == ('HEAD', ORDER_URL)

    def test_post_bad_nonce_retried_once(self):
        bad_nonce = test_util.response(
            400, jobj={'type': 'urn:ietf:params:acme:error:badNonce'},
            headers={'Replay-Nonce': 'ignored'})
        self.request.side_effect = [
            self._nonce_response('nonce1'),
            bad_nonce,
            self._nonce_response('nonce2'),
            test_util.response(200, jobj={'ok': True}, headers={'Replay-Nonce': 'nonce3'}),
        ]
        response = self.net.post(ORDER_URL, None, new_nonce_url='https://acme.test/new-nonce')
        assert response.json() == {'ok': True}
        calls = self.request.call_args_list
        assert [call[0][0] for call in calls] == ['HEAD', 'POST', 'HEAD', 'POST']
        assert _protected(calls[1])['nonce'] == 'nonce1'
        assert _protected(calls[3])['nonce'] == 'nonce2'

    def test_post_bad_nonce_twice(self):
        def bad_nonce():
            return test_util.response(
                400, jobj={'type': 'urn:ietf:params:acme:error:badNonce'})
        self.request.side_effect = [
            self._nonce_response('nonce1'), bad_nonce(),
            self._nonce_response('nonce2'), bad_nonce(),
        ]
        with pytest.raises(messages.Error) as error:
            self.net.post(ORDER_URL, None, new_nonce_url='https://acme.test/new-nonce')
        assert error.value.code == 'badNonce'
        assert self.request.call_count == 4

    def test_post_other_error_not_retried(self):
        self.request.side_effect = [
            self._nonce_response('nonce1'),
            test_util.response(403, jobj={'type': 'urn:ietf:params:acme:error:unauthorized'}),
        ]
        with pytest.raises(messages.Error):
            self.net.post(ORDER_URL, None, new_nonce_url='https://acme.test/new-nonce')
        assert self.request.call_count == 2

    def test_post_missing_nonce(self):
        self.request.side_effect = [
            self._nonce_response('nonce1'),
            test_util.response(200, jobj={}),
        ]
        with pytest.raises(errors.MissingNonce):
            self.net.post(ORDER_URL, None, new_nonce_url='https://acme.test/new-nonce')

    def test_new_nonce_endpoint_without_nonce(self):
        self.request.return_value = test_util.response(200)
        with pytest.raises(errors.MissingNonce):
            self.net.post(ORDER_URL, None, new_nonce_url='https://acme.test/new-nonce')
        assert self.request.call_count == 1

    def test_bad_nonce_header(self):
        self.request.return_value = self._nonce_response('not a nonce!')
        with pytest.raises(errors.BadNonce):
            self.net.post(ORDER_URL, None, new_nonce_url='https://acme.test/new-nonce')

    def test_signed_with_account_key(self):
        self.request.side_effect = [
            self._nonce_response('nonce1'),
            test_util.response(200, jobj={}, headers={'Replay-Nonce': 'nonce2'}),
        ]
        self.net.post(ORDER_URL, None, new_nonce_url='https://acme.test/new-nonce')
        from acmeflow.jws import JWS
        signed = JWS.json_loads(self.request.call_args_list[1][1]['data'])
        assert signed.verify(KEY.public_key())


if __name__ == '__main__':
    sys.exit(pytest.main(sys.argv[1:] + [__file__]))  # pragma: no cover
