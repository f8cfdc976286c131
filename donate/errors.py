"""
Errors raised while challenging or redeeming a donation payment.

Every error knows the HTTP status and JSON body it is rendered as.
"""
from typing import Any, Dict, Optional

from rest_framework import status


class DonationError(Exception):
    """Base error for the donation payment exchange."""

    message = 'Payment processing failed'
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: Optional[str] = None, *, reason: Optional[str] = None,
                 details: Optional[str] = None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.reason = reason
        self.details = details

    def as_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {'error': self.message}
        if self.reason is not None:
            body['reason'] = self.reason
        if self.details is not None:
            body['details'] = self.details
        return body


class InvalidRecipient(DonationError):
    message = 'Invalid recipient address'
    status_code = status.HTTP_400_BAD_REQUEST


class UnsupportedNetwork(DonationError):
    message = 'Unsupported network'
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidAmount(DonationError):
    message = 'Invalid amount'
    status_code = status.HTTP_400_BAD_REQUEST


class MalformedPayload(DonationError):
    """The payment header is not base64-encoded JSON."""


class VerificationTransportError(DonationError):
    message = 'Payment verification failed'
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidPayment(DonationError):
    message = 'Invalid payment'
    status_code = status.HTTP_400_BAD_REQUEST


class SettlementTransportError(DonationError):
    message = 'Payment settlement failed'


class SettlementFailed(DonationError):
    message = 'Settlement failed'
