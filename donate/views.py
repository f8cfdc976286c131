from typing import Optional

import requests
from django.conf import settings
from loguru import logger
from rest_framework import status
from rest_framework.exceptions import ParseError, UnsupportedMediaType
from rest_framework.response import Response
from rest_framework.views import APIView

from donate.errors import DonationError
from donate.exchange import (
    PAYMENT_REQUIRED_HEADER,
    PaymentChallenge,
    PaymentExchange,
    find_payment_header,
    parse_amount,
)
from donate.facilitator import FacilitatorClient
from donate.networks import NETWORK_PROFILES


def get_exchange(facilitator: Optional[FacilitatorClient] = None) -> PaymentExchange:
    return PaymentExchange(
        facilitator,
        strict_validation=getattr(settings, 'DONATE_STRICT_VALIDATION', False),
    )


def _amount_from_request(request) -> int:
    return parse_amount(
        request.query_params.get('amount'),
        getattr(settings, 'DONATE_DEFAULT_AMOUNT_CENTS', 100),
    )


def _donor_message(request) -> Optional[str]:
    try:
        data = request.data
    except (ParseError, UnsupportedMediaType) as exc:
        logger.debug('ignoring unreadable donation body: {}', exc)
        return None
    message = data.get('message') if hasattr(data, 'get') else None
    return message if isinstance(message, str) else None


def _challenge_response(challenge: PaymentChallenge) -> Response:
    return Response(
        challenge.body,
        status=status.HTTP_402_PAYMENT_REQUIRED,
        headers={PAYMENT_REQUIRED_HEADER: challenge.header_value()},
    )


def _error_response(exc: DonationError) -> Response:
    return Response(exc.as_body(), status=exc.status_code)


class DonationView(APIView):
    """
    x402-protected donation endpoint.

    GET always answers with a 402 challenge. POST redeems the payment proof
    carried in ``PAYMENT-SIGNATURE`` (or legacy ``X-PAYMENT``), or answers
    with the same challenge when there is none.
    """
    authentication_classes: list = []
    permission_classes: list = []

    def get(self, request, recipient: str, network: str, *args, **kwargs) -> Response:
        try:
            amount_cents = _amount_from_request(request)
            challenge = get_exchange().challenge(
                recipient, network, amount_cents, request.build_absolute_uri())
        except DonationError as exc:
            logger.info('x402 challenge refused for {} on {}: {}', recipient, network, exc.message)
            return _error_response(exc)
        return _challenge_response(challenge)

    def post(self, request, recipient: str, network: str, *args, **kwargs) -> Response:
        payment_header = find_payment_header(request.headers)
        logger.debug('donation POST for {} on {} (payment header: {})',
                     recipient, network, 'yes' if payment_header else 'no')

        try:
            amount_cents = _amount_from_request(request)
            # verify and settle share one pooled connection
            with requests.Session() as session:
                result = get_exchange(FacilitatorClient.from_settings(session=session)).redeem(
                    recipient,
                    network,
                    amount_cents,
                    request.build_absolute_uri(),
                    payment_header,
                )
        except DonationError as exc:
            return _error_response(exc)
        except Exception as exc:
            logger.exception('x402 donation processing error: {}', exc)
            return Response(DonationError().as_body(), status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        if isinstance(result, PaymentChallenge):
            return _challenge_response(result)

        message = _donor_message(request)
        if message:
            logger.info('donation {} carried message: {}', result.transaction, message)
        return Response(result.body, status=status.HTTP_200_OK)


class NetworksView(APIView):
    """List the networks donations can be paid on."""

    authentication_classes: list = []
    permission_classes: list = []

    def get(self, request, *args, **kwargs):  # noqa: ANN001
        networks = [profile.describe() for profile in NETWORK_PROFILES.values()]
        return Response({'networks': networks}, status=status.HTTP_200_OK)
