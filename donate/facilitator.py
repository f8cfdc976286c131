"""
HTTP client for the x402 facilitator's ``/verify`` and ``/settle`` endpoints.
"""
from typing import Any, Dict, Optional, Type, TypeVar

import requests
from django.conf import settings
from loguru import logger
from pydantic import BaseModel, ValidationError as PydanticValidationError

from donate.schemas import X402_VERSION, PaymentRequirements, SettleResponse, VerifyResponse

ResponseModel = TypeVar('ResponseModel', bound=BaseModel)


class FacilitatorTransportError(Exception):
    """Raised when the facilitator cannot be reached or answers with garbage."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class FacilitatorClient:
    """
    Thin wrapper around the facilitator endpoints.

    The facilitator is the only authority on payment validity and settlement;
    this client forwards the payment payload untouched.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str = '',
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, session: Optional[requests.Session] = None) -> 'FacilitatorClient':
        return cls(
            settings.FACILITATOR_URL,
            api_key=getattr(settings, 'FACILITATOR_API_KEY', ''),
            timeout=getattr(settings, 'FACILITATOR_TIMEOUT_SECONDS', 30),
            session=session,
        )

    def _headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['X-API-KEY'] = self.api_key
        return headers

    @staticmethod
    def _request_body(payload: Dict[str, Any], requirements: PaymentRequirements) -> Dict[str, Any]:
        return {
            'x402Version': X402_VERSION,
            'protocolVersion': X402_VERSION,
            'paymentPayload': payload,
            'paymentRequirements': requirements.model_dump(by_alias=True),
        }

    def _post(self, endpoint: str, body: Dict[str, Any], model: Type[ResponseModel]) -> ResponseModel:
        url = f'{self.base_url}/{endpoint}'
        logger.debug('x402 facilitator request to {}: {}', url, body['paymentRequirements'])
        try:
            response = self.session.post(url, json=body, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as exc:
            raise FacilitatorTransportError(f'Unable to reach facilitator: {exc}') from exc

        logger.debug('x402 facilitator {} responded with {}', endpoint, response.status_code)
        if not response.ok:
            raise FacilitatorTransportError(response.text)

        try:
            return model.model_validate(response.json())
        except (ValueError, PydanticValidationError) as exc:
            # undecodable JSON surfaces as a ValueError subclass from requests
            raise FacilitatorTransportError(
                f'Unexpected response from facilitator: {response.text}') from exc

    def verify(self, payload: Dict[str, Any], requirements: PaymentRequirements) -> VerifyResponse:
        return self._post('verify', self._request_body(payload, requirements), VerifyResponse)

    def settle(self, payload: Dict[str, Any], requirements: PaymentRequirements) -> SettleResponse:
        return self._post('settle', self._request_body(payload, requirements), SettleResponse)
