from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

X402_VERSION = 2


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class PaymentRequirements(CamelModel):
    """One accepted way of paying for a resource, as advertised in a 402 challenge."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    scheme: str
    network: str
    amount: str
    resource: str
    description: str
    mime_type: str
    pay_to: str
    max_timeout_seconds: int
    asset: str
    extra: Dict[str, str]


class VerifyResponse(CamelModel):
    # null and missing both read as a rejection
    is_valid: Optional[bool] = None
    invalid_reason: Optional[str] = None
    payer: Optional[str] = None


class SettleResponse(CamelModel):
    success: Optional[bool] = None
    error_reason: Optional[str] = None
    transaction: Optional[str] = None
    network: Optional[str] = None
    payer: Optional[str] = None
