import base64
import json
from unittest.mock import patch

from django.test import SimpleTestCase, override_settings
from django.urls import reverse
from requests.structures import CaseInsensitiveDict

from donate.errors import (
    InvalidAmount,
    InvalidPayment,
    MalformedPayload,
    SettlementFailed,
    UnsupportedNetwork,
)
from donate.exchange import (
    DonationReceipt,
    PaymentChallenge,
    PaymentExchange,
    decode_payment_header,
    find_payment_header,
    parse_amount,
)
from donate.facilitator import FacilitatorTransportError
from donate.schemas import SettleResponse, VerifyResponse

RECIPIENT = '0x1234567890abcdef1234567890ABCDEF12345678'


def encode_payload(payload: dict) -> str:
    return base64.b64encode(json.dumps(payload).encode('utf-8')).decode('ascii')


def decode_challenge(header_value: str) -> dict:
    return json.loads(base64.b64decode(header_value))


class FakeFacilitator:
    """Records every call and answers with canned responses."""

    def __init__(self):
        self.verify_response = VerifyResponse(is_valid=True, payer='0xpayer')
        self.settle_response = SettleResponse(success=True, transaction='0xabc123', payer='0xpayer')
        self.verify_error = None
        self.settle_error = None
        self.verify_calls = []
        self.settle_calls = []

    def verify(self, payload, requirements):
        self.verify_calls.append((payload, requirements))
        if self.verify_error is not None:
            raise self.verify_error
        return self.verify_response

    def settle(self, payload, requirements):
        self.settle_calls.append((payload, requirements))
        if self.settle_error is not None:
            raise self.settle_error
        return self.settle_response


class DonationViewTests(SimpleTestCase):
    def setUp(self) -> None:
        self.facilitator = FakeFacilitator()
        patcher = patch('donate.views.FacilitatorClient.from_settings', return_value=self.facilitator)
        self.from_settings = patcher.start()
        self.addCleanup(patcher.stop)

        self.payload = {
            'x402Version': 2,
            'payload': {'signature': '0x' + 'ab' * 65, 'authorization': {'nonce': '0x01'}},
        }

    def _url(self, recipient: str = RECIPIENT, network: str = 'base', amount=None) -> str:
        url = reverse('donate:donate', kwargs={'recipient': recipient, 'network': network})
        if amount is not None:
            url = f'{url}?amount={amount}'
        return url

    def _redeem(self, url=None, **headers):
        if not headers:
            headers = {'HTTP_PAYMENT_SIGNATURE': encode_payload(self.payload)}
        return self.client.post(
            url or self._url(amount=300),
            data=json.dumps({'message': 'thanks for the coffee'}),
            content_type='application/json',
            **headers,
        )

    def test_get_issues_challenge_with_default_amount(self):
        response = self.client.get(self._url())

        self.assertEqual(response.status_code, 402)
        self.assertEqual(response.json(), {'error': 'Payment Required'})

        challenge = decode_challenge(response.headers['PAYMENT-REQUIRED'])
        self.assertEqual(challenge['x402Version'], 2)
        self.assertEqual(challenge['protocolVersion'], 2)
        self.assertEqual(challenge['error'], 'Payment Required')
        self.assertEqual(len(challenge['accepts']), 1)

        requirement = challenge['accepts'][0]
        self.assertEqual(requirement['scheme'], 'exact')
        self.assertEqual(requirement['network'], 'eip155:8453')
        self.assertEqual(requirement['amount'], '1000000')
        self.assertEqual(requirement['resource'], f'http://testserver{self._url()}')
        self.assertEqual(requirement['description'], f'Donation of $1.00 to {RECIPIENT}')
        self.assertEqual(requirement['mimeType'], 'application/json')
        self.assertEqual(requirement['payTo'], RECIPIENT)
        self.assertEqual(requirement['maxTimeoutSeconds'], 300)
        self.assertEqual(requirement['asset'], '0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913')
        self.assertEqual(requirement['extra'], {'name': 'USD Coin', 'version': '2'})

    def test_get_converts_cents_exactly(self):
        response = self.client.get(self._url(network='base-sepolia', amount=300))

        self.assertEqual(response.status_code, 402)
        requirement = decode_challenge(response.headers['PAYMENT-REQUIRED'])['accepts'][0]
        self.assertEqual(requirement['amount'], '3000000')
        self.assertEqual(requirement['network'], 'eip155:84532')
        self.assertEqual(requirement['extra'], {'name': 'USDC', 'version': '2'})
        self.assertEqual(requirement['resource'], f'http://testserver{self._url(network="base-sepolia", amount=300)}')

    def test_get_rejects_invalid_recipient(self):
        response = self.client.get(self._url(recipient='0x' + 'Z' * 40))

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {'error': 'Invalid recipient address'})
        self.assertNotIn('PAYMENT-REQUIRED', response.headers)

    def test_get_rejects_unsupported_network(self):
        response = self.client.get(self._url(network='unknown-network'))

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {'error': 'Unsupported network'})

    def test_get_rejects_non_positive_and_non_numeric_amounts(self):
        for amount in ('0', '-5', 'abc', '1.5'):
            with self.subTest(amount=amount):
                response = self.client.get(self._url(amount=amount))
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json(), {'error': 'Invalid amount'})

    def test_post_without_header_returns_same_challenge_as_get(self):
        url = self._url(amount=250)
        get_response = self.client.get(url)
        post_response = self.client.post(url)

        self.assertEqual(post_response.status_code, 402)
        self.assertEqual(post_response.json(), get_response.json())
        self.assertEqual(post_response.headers['PAYMENT-REQUIRED'], get_response.headers['PAYMENT-REQUIRED'])
        self.assertEqual(self.facilitator.verify_calls, [])

    def test_post_does_not_validate_recipient_by_default(self):
        response = self.client.post(self._url(recipient='0xZZZZ'))

        self.assertEqual(response.status_code, 402)
        requirement = decode_challenge(response.headers['PAYMENT-REQUIRED'])['accepts'][0]
        self.assertEqual(requirement['payTo'], '0xZZZZ')

    @override_settings(DONATE_STRICT_VALIDATION=True)
    def test_post_validates_recipient_in_strict_mode(self):
        response = self._redeem(url=self._url(recipient='0xZZZZ'))

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {'error': 'Invalid recipient address'})
        self.assertEqual(self.facilitator.verify_calls, [])

    def test_post_rejects_unsupported_network(self):
        response = self._redeem(url=self._url(network='polygon'))

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {'error': 'Unsupported network'})
        self.assertEqual(self.facilitator.verify_calls, [])

    def test_post_settles_valid_payment(self):
        response = self._redeem()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {'success': True, 'recipient': RECIPIENT, 'network': 'base', 'txHash': '0xabc123'},
        )
        self.assertEqual(len(self.facilitator.verify_calls), 1)
        self.assertEqual(len(self.facilitator.settle_calls), 1)

        payload, requirements = self.facilitator.verify_calls[0]
        self.assertEqual(payload, self.payload)
        self.assertEqual(requirements.amount, '3000000')
        self.assertEqual(self.facilitator.settle_calls[0], (payload, requirements))

    def test_redemption_requirements_match_challenge(self):
        url = self._url(amount=300)
        challenge = decode_challenge(self.client.get(url).headers['PAYMENT-REQUIRED'])

        self._redeem(url=url)

        _, requirements = self.facilitator.verify_calls[0]
        self.assertEqual(requirements.model_dump(by_alias=True), challenge['accepts'][0])

    def test_post_reports_invalid_payment_without_settling(self):
        self.facilitator.verify_response = VerifyResponse(is_valid=False, invalid_reason='expired')

        response = self._redeem()

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {'error': 'Invalid payment', 'reason': 'expired'})
        self.assertEqual(len(self.facilitator.verify_calls), 1)
        self.assertEqual(self.facilitator.settle_calls, [])

    def test_post_reports_failed_settlement(self):
        self.facilitator.settle_response = SettleResponse(success=False, error_reason='insufficient_funds')

        response = self._redeem()

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {'error': 'Settlement failed', 'reason': 'insufficient_funds'})

    def test_post_reports_verify_transport_error(self):
        self.facilitator.verify_error = FacilitatorTransportError('upstream unavailable')

        response = self._redeem()

        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json(),
            {'error': 'Payment verification failed', 'details': 'upstream unavailable'},
        )
        self.assertEqual(self.facilitator.settle_calls, [])

    def test_post_reports_settle_transport_error(self):
        self.facilitator.settle_error = FacilitatorTransportError('gateway timeout')

        response = self._redeem()

        self.assertEqual(response.status_code, 500)
        self.assertEqual(
            response.json(),
            {'error': 'Payment settlement failed', 'details': 'gateway timeout'},
        )

    def test_post_rejects_malformed_payment_header(self):
        response = self._redeem(HTTP_PAYMENT_SIGNATURE='not base64 json!')

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['error'], 'Payment processing failed')
        self.assertEqual(self.facilitator.verify_calls, [])

    def test_post_accepts_legacy_header(self):
        response = self._redeem(HTTP_X_PAYMENT=encode_payload(self.payload))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.facilitator.verify_calls[0][0], self.payload)

    def test_post_prefers_payment_signature_header(self):
        legacy = {'x402Version': 1, 'payload': {'signature': '0xlegacy'}}

        self._redeem(
            HTTP_PAYMENT_SIGNATURE=encode_payload(self.payload),
            HTTP_X_PAYMENT=encode_payload(legacy),
        )

        self.assertEqual(self.facilitator.verify_calls[0][0], self.payload)

    def test_post_rejects_deeply_nested_payment_header(self):
        header = base64.b64encode(b'[' * 5000).decode('ascii')

        response = self._redeem(HTTP_PAYMENT_SIGNATURE=header)

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response['Content-Type'], 'application/json')
        self.assertEqual(response.json()['error'], 'Payment processing failed')
        self.assertEqual(self.facilitator.verify_calls, [])

    def test_post_renders_unexpected_errors_as_json(self):
        self.facilitator.verify_error = RuntimeError('facilitator client bug')

        response = self._redeem()

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {'error': 'Payment processing failed'})
        self.assertEqual(self.facilitator.settle_calls, [])

    def test_get_opens_no_facilitator_session(self):
        with patch('donate.views.requests.Session') as session_cls:
            response = self.client.get(self._url())

        self.assertEqual(response.status_code, 402)
        session_cls.assert_not_called()
        self.from_settings.assert_not_called()

    def test_post_closes_its_facilitator_session(self):
        with patch('donate.views.requests.Session') as session_cls:
            response = self._redeem()

        self.assertEqual(response.status_code, 200)
        session_cls.assert_called_once_with()
        session_cls.return_value.__exit__.assert_called_once()
        self.from_settings.assert_called_once_with(
            session=session_cls.return_value.__enter__.return_value)

    def test_post_without_body_settles(self):
        response = self.client.post(
            self._url(),
            HTTP_PAYMENT_SIGNATURE=encode_payload(self.payload),
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['txHash'], '0xabc123')


class NetworksViewTests(SimpleTestCase):
    def test_lists_configured_networks(self):
        response = self.client.get(reverse('donate:networks'))

        self.assertEqual(response.status_code, 200)
        networks = {item['network']: item for item in response.json()['networks']}
        self.assertEqual(set(networks), {'base', 'base-sepolia', 'mainnet', 'sepolia'})
        self.assertEqual(networks['mainnet']['chainId'], 1)
        self.assertEqual(networks['sepolia']['caip2'], 'eip155:11155111')

    def test_health(self):
        response = self.client.get(reverse('health'))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'status': 'ok'})


class PaymentExchangeTests(SimpleTestCase):
    def setUp(self) -> None:
        self.facilitator = FakeFacilitator()
        self.exchange = PaymentExchange(self.facilitator)
        self.header = encode_payload({'payload': {'signature': '0x01'}})

    def test_challenge_is_deterministic(self):
        first = self.exchange.challenge(RECIPIENT, 'mainnet', 500, 'https://donate.example/a')
        second = self.exchange.challenge(RECIPIENT, 'mainnet', 500, 'https://donate.example/a')

        self.assertEqual(first.header_value(), second.header_value())
        self.assertEqual(first.body, {'error': 'Payment Required'})

    def test_redeem_without_header_returns_challenge(self):
        result = self.exchange.redeem(RECIPIENT, 'sepolia', 100, 'https://donate.example/a', None)

        self.assertIsInstance(result, PaymentChallenge)
        self.assertEqual(result.requirements[0].amount, '1000000')

    def test_redeem_returns_receipt(self):
        result = self.exchange.redeem(RECIPIENT, 'base', 100, 'https://donate.example/a', self.header)

        self.assertIsInstance(result, DonationReceipt)
        self.assertEqual(result.transaction, '0xabc123')
        self.assertEqual(result.payer, '0xpayer')

    def test_redeem_checks_network_before_header(self):
        with self.assertRaises(UnsupportedNetwork):
            self.exchange.redeem(RECIPIENT, 'solana', 100, 'https://donate.example/a', None)

    def test_null_verification_result_is_a_rejection(self):
        self.facilitator.verify_response = VerifyResponse.model_validate({'isValid': None})

        with self.assertRaises(InvalidPayment) as ctx:
            self.exchange.redeem(RECIPIENT, 'base', 100, 'https://donate.example/a', self.header)
        self.assertIsNone(ctx.exception.reason)
        self.assertEqual(self.facilitator.settle_calls, [])

    def test_null_settlement_result_is_a_failure(self):
        self.facilitator.settle_response = SettleResponse.model_validate({'success': None})

        with self.assertRaises(SettlementFailed):
            self.exchange.redeem(RECIPIENT, 'base', 100, 'https://donate.example/a', self.header)

    def test_strict_mode_checks_amount(self):
        exchange = PaymentExchange(self.facilitator, strict_validation=True)

        with self.assertRaises(InvalidAmount):
            exchange.redeem(RECIPIENT, 'base', 0, 'https://donate.example/a', self.header)
        self.assertEqual(self.facilitator.verify_calls, [])


class PaymentHeaderTests(SimpleTestCase):
    def test_find_payment_header_is_case_insensitive(self):
        headers = CaseInsensitiveDict({'payment-signature': 'current', 'x-payment': 'legacy'})
        self.assertEqual(find_payment_header(headers), 'current')

    def test_find_payment_header_falls_back_to_legacy(self):
        headers = CaseInsensitiveDict({'Payment-Signature': '', 'X-Payment': 'legacy'})
        self.assertEqual(find_payment_header(headers), 'legacy')

    def test_find_payment_header_missing(self):
        self.assertIsNone(find_payment_header(CaseInsensitiveDict()))

    def test_decode_payment_header(self):
        payload = {'x402Version': 2, 'payload': {'signature': '0x01'}}
        self.assertEqual(decode_payment_header(encode_payload(payload)), payload)

    def test_decode_payment_header_rejects_non_objects(self):
        for value in ('%%%', base64.b64encode(b'not json').decode(), encode_payload([1, 2])):
            with self.subTest(value=value):
                with self.assertRaises(MalformedPayload):
                    decode_payment_header(value)

    def test_parse_amount(self):
        self.assertEqual(parse_amount(None, 100), 100)
        self.assertEqual(parse_amount('', 100), 100)
        self.assertEqual(parse_amount('42', 100), 42)
        self.assertEqual(parse_amount(' +7 ', 100), 7)
        self.assertEqual(parse_amount('-5', 100), -5)
        with self.assertRaises(InvalidAmount):
            parse_amount('ten', 100)

    def test_parse_amount_accepts_only_ascii_integers(self):
        for raw in ('1_000', '١٢', '10abc', '1.5', '1e3', '0x10'):
            with self.subTest(raw=raw):
                with self.assertRaises(InvalidAmount):
                    parse_amount(raw, 100)
