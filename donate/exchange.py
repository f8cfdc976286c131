"""
x402 challenge and redemption for donations.

A request without a payment proof is answered with a 402 challenge. A request
carrying a proof is verified and then settled through the facilitator; settle
is only attempted once verify has accepted the payment.
"""
import base64
import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Union

from eth_utils import is_hex_address
from loguru import logger

from donate.errors import (
    InvalidAmount,
    InvalidPayment,
    InvalidRecipient,
    MalformedPayload,
    SettlementFailed,
    SettlementTransportError,
    UnsupportedNetwork,
    VerificationTransportError,
)
from donate.facilitator import FacilitatorClient, FacilitatorTransportError
from donate.networks import is_supported_network
from donate.requirements import build_payment_requirements
from donate.schemas import X402_VERSION, PaymentRequirements

PAYMENT_REQUIRED_HEADER = 'PAYMENT-REQUIRED'
# Checked in order; the legacy v1 header comes last.
PAYMENT_HEADERS = ('PAYMENT-SIGNATURE', 'X-PAYMENT')
PAYMENT_REQUIRED_ERROR = 'Payment Required'
# Signed integer cents, ASCII digits only.
AMOUNT_PATTERN = re.compile(r'[+-]?[0-9]+')


@dataclass(frozen=True)
class PaymentChallenge:
    requirements: List[PaymentRequirements]
    error: str = PAYMENT_REQUIRED_ERROR

    def payment_required(self) -> Dict[str, Any]:
        return {
            'x402Version': X402_VERSION,
            'protocolVersion': X402_VERSION,
            'accepts': [item.model_dump(by_alias=True) for item in self.requirements],
            'error': self.error,
        }

    def header_value(self) -> str:
        encoded = json.dumps(self.payment_required(), separators=(',', ':'))
        return base64.b64encode(encoded.encode('utf-8')).decode('ascii')

    @property
    def body(self) -> Dict[str, Any]:
        return {'error': self.error}


@dataclass(frozen=True)
class DonationReceipt:
    recipient: str
    network: str
    transaction: Optional[str]
    payer: Optional[str] = None

    @property
    def body(self) -> Dict[str, Any]:
        return {
            'success': True,
            'recipient': self.recipient,
            'network': self.network,
            'txHash': self.transaction,
        }


def parse_amount(raw: Optional[str], default: int) -> int:
    """Parse the ``amount`` query parameter (cents); absent or blank means ``default``."""
    if raw is None or not raw.strip():
        return default
    value = raw.strip()
    if not AMOUNT_PATTERN.fullmatch(value):
        raise InvalidAmount()
    return int(value)


def find_payment_header(headers: Mapping[str, str]) -> Optional[str]:
    """
    Return the first non-empty payment proof header.

    ``headers`` must be case-insensitive, as Django's ``request.headers`` is.
    """
    for name in PAYMENT_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return None


def decode_payment_header(value: str) -> Dict[str, Any]:
    try:
        decoded = base64.b64decode(value.strip(), validate=True)
        payload = json.loads(decoded.decode('utf-8'))
    except (ValueError, RecursionError) as exc:
        raise MalformedPayload(details='Payment header is not base64-encoded JSON.') from exc
    if not isinstance(payload, dict):
        raise MalformedPayload(details='Payment payload must be a JSON object.')
    return payload


def validate_recipient(recipient: str) -> None:
    if not recipient.startswith('0x') or not is_hex_address(recipient):
        raise InvalidRecipient()


def validate_network(network: str) -> None:
    if not is_supported_network(network):
        raise UnsupportedNetwork()


def validate_amount(amount_cents: int) -> None:
    if amount_cents < 1:
        raise InvalidAmount()


class PaymentExchange:
    """
    Runs the x402 exchange for one donation endpoint.

    Holds no per-request state, so a single instance can serve concurrent
    requests.
    """

    def __init__(self, facilitator: Optional[FacilitatorClient] = None, *,
                 strict_validation: bool = False):
        self.facilitator = facilitator
        self.strict_validation = strict_validation

    def _issue_challenge(self, recipient: str, network: str, amount_cents: int,
                         resource_url: str) -> PaymentChallenge:
        requirements = build_payment_requirements(recipient, network, amount_cents, resource_url)
        logger.info('x402 challenge issued: recipient={} network={} amount={}',
                    recipient, network, requirements[0].amount)
        return PaymentChallenge(requirements=requirements)

    def challenge(self, recipient: str, network: str, amount_cents: int,
                  resource_url: str) -> PaymentChallenge:
        validate_recipient(recipient)
        validate_network(network)
        validate_amount(amount_cents)
        return self._issue_challenge(recipient, network, amount_cents, resource_url)

    def redeem(
        self,
        recipient: str,
        network: str,
        amount_cents: int,
        resource_url: str,
        payment_header: Optional[str],
    ) -> Union[PaymentChallenge, DonationReceipt]:
        validate_network(network)
        if self.strict_validation:
            validate_recipient(recipient)
            validate_amount(amount_cents)

        if not payment_header:
            return self._issue_challenge(recipient, network, amount_cents, resource_url)

        payload = decode_payment_header(payment_header)
        # Must match what the challenge for the same inputs advertised.
        requirements = build_payment_requirements(recipient, network, amount_cents, resource_url)[0]

        try:
            verification = self.facilitator.verify(payload, requirements)
        except FacilitatorTransportError as exc:
            logger.error('x402 facilitator verify error: {}', exc.message)
            raise VerificationTransportError(details=exc.message) from exc

        if not verification.is_valid:
            logger.info('x402 payment rejected by facilitator: {}', verification.invalid_reason)
            raise InvalidPayment(reason=verification.invalid_reason)

        logger.debug('x402 payment verified for payer {}, settling', verification.payer)

        try:
            settlement = self.facilitator.settle(payload, requirements)
        except FacilitatorTransportError as exc:
            logger.error('x402 facilitator settle error: {}', exc.message)
            raise SettlementTransportError(details=exc.message) from exc

        if not settlement.success:
            logger.error('x402 settlement failed: {}', settlement.error_reason)
            raise SettlementFailed(reason=settlement.error_reason)

        logger.info('x402 donation settled: recipient={} network={} tx={}',
                    recipient, network, settlement.transaction)
        return DonationReceipt(
            recipient=recipient,
            network=network,
            transaction=settlement.transaction,
            payer=settlement.payer or verification.payer,
        )
