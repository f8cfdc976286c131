from unittest.mock import Mock

import requests
from django.test import SimpleTestCase, override_settings

from donate.facilitator import FacilitatorClient, FacilitatorTransportError
from donate.requirements import build_payment_requirements

RECIPIENT = '0x1234567890abcdef1234567890ABCDEF12345678'


def make_response(status_code=200, json_body=None, text=''):
    response = Mock(spec=requests.Response)
    response.status_code = status_code
    response.ok = status_code < 400
    response.text = text
    if isinstance(json_body, Exception):
        response.json.side_effect = json_body
    else:
        response.json.return_value = json_body
    return response


class FacilitatorClientTests(SimpleTestCase):
    def setUp(self) -> None:
        self.session = Mock(spec=requests.Session)
        self.requirements = build_payment_requirements(
            RECIPIENT, 'base-sepolia', 100, 'https://donate.example/api')[0]
        self.payload = {'x402Version': 2, 'payload': {'signature': '0x01'}}

    def _client(self, **kwargs) -> FacilitatorClient:
        return FacilitatorClient('https://facilitator.example/', session=self.session, **kwargs)

    def test_verify_posts_payload_and_requirements(self):
        self.session.post.return_value = make_response(json_body={'isValid': True, 'payer': '0xpayer'})

        result = self._client(api_key='secret', timeout=5).verify(self.payload, self.requirements)

        self.assertTrue(result.is_valid)
        self.assertEqual(result.payer, '0xpayer')
        self.session.post.assert_called_once_with(
            'https://facilitator.example/verify',
            json={
                'x402Version': 2,
                'protocolVersion': 2,
                'paymentPayload': self.payload,
                'paymentRequirements': self.requirements.model_dump(by_alias=True),
            },
            headers={'Content-Type': 'application/json', 'X-API-KEY': 'secret'},
            timeout=5,
        )

    def test_api_key_header_is_optional(self):
        self.session.post.return_value = make_response(json_body={'success': True, 'transaction': '0xabc'})

        result = self._client().settle(self.payload, self.requirements)

        self.assertTrue(result.success)
        self.assertEqual(result.transaction, '0xabc')
        args, kwargs = self.session.post.call_args
        self.assertEqual(args[0], 'https://facilitator.example/settle')
        self.assertEqual(kwargs['headers'], {'Content-Type': 'application/json'})

    def test_null_outcome_fields_parse_as_unset(self):
        self.session.post.return_value = make_response(json_body={'isValid': None, 'success': None})

        self.assertIsNone(self._client().verify(self.payload, self.requirements).is_valid)
        self.assertIsNone(self._client().settle(self.payload, self.requirements).success)

    def test_invalid_reason_is_parsed(self):
        self.session.post.return_value = make_response(
            json_body={'isValid': False, 'invalidReason': 'expired', 'unknownField': 1})

        result = self._client().verify(self.payload, self.requirements)

        self.assertFalse(result.is_valid)
        self.assertEqual(result.invalid_reason, 'expired')

    def test_error_status_raises_transport_error(self):
        self.session.post.return_value = make_response(status_code=502, text='bad gateway')

        with self.assertRaises(FacilitatorTransportError) as ctx:
            self._client().verify(self.payload, self.requirements)
        self.assertEqual(ctx.exception.message, 'bad gateway')

    def test_connection_error_raises_transport_error(self):
        self.session.post.side_effect = requests.ConnectionError('refused')

        with self.assertRaises(FacilitatorTransportError):
            self._client().settle(self.payload, self.requirements)

    def test_timeout_raises_transport_error(self):
        self.session.post.side_effect = requests.Timeout('slow')

        with self.assertRaises(FacilitatorTransportError):
            self._client().verify(self.payload, self.requirements)

    def test_unparseable_body_raises_transport_error(self):
        self.session.post.return_value = make_response(json_body=ValueError('no json'), text='<html>')

        with self.assertRaises(FacilitatorTransportError) as ctx:
            self._client().verify(self.payload, self.requirements)
        self.assertIn('<html>', ctx.exception.message)

    def test_non_object_body_raises_transport_error(self):
        self.session.post.return_value = make_response(json_body=['unexpected'], text='["unexpected"]')

        with self.assertRaises(FacilitatorTransportError):
            self._client().settle(self.payload, self.requirements)

    @override_settings(
        FACILITATOR_URL='https://facilitator.example/x402/',
        FACILITATOR_API_KEY='from-settings',
        FACILITATOR_TIMEOUT_SECONDS=12,
    )
    def test_from_settings(self):
        client = FacilitatorClient.from_settings(session=self.session)

        self.assertEqual(client.base_url, 'https://facilitator.example/x402')
        self.assertEqual(client.api_key, 'from-settings')
        self.assertEqual(client.timeout, 12)
        self.assertIs(client.session, self.session)
