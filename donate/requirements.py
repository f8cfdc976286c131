"""
Payment requirement construction for donations.

Requirements are never stored: the redemption path rebuilds them from the same
inputs the challenge used, so everything here must stay a pure function of
(recipient, network, amount, resource URL).
"""
from decimal import Decimal
from typing import List

from donate.networks import get_network_profile
from donate.schemas import PaymentRequirements

SCHEME = 'exact'
MIME_TYPE = 'application/json'
MAX_TIMEOUT_SECONDS = 300

# One cent expressed in USDC base units (6 decimals).
USDC_UNITS_PER_CENT = 10_000

_CENT = Decimal('0.01')


def cents_to_usdc_units(amount_cents: int) -> int:
    return amount_cents * USDC_UNITS_PER_CENT


def format_dollars(amount_cents: int) -> str:
    return str((Decimal(amount_cents) / 100).quantize(_CENT))


def build_payment_requirements(
    recipient: str,
    network: str,
    amount_cents: int,
    resource_url: str,
) -> List[PaymentRequirements]:
    """
    Build the payment requirements for a donation.

    Args:
        recipient: Hex address receiving the donation, used verbatim as ``payTo``.
        network: Network slug, e.g. ``base`` or ``base-sepolia``.
        amount_cents: Donation amount in cents.
        resource_url: The URL being paid for.

    Returns:
        A single-element list offering the ``exact`` scheme on ``network``.

    Raises:
        UnsupportedNetwork: If ``network`` has no profile.
    """
    profile = get_network_profile(network)

    return [
        PaymentRequirements(
            scheme=SCHEME,
            network=profile.caip2,
            amount=str(cents_to_usdc_units(amount_cents)),
            resource=resource_url,
            description=f'Donation of ${format_dollars(amount_cents)} to {recipient}',
            mime_type=MIME_TYPE,
            pay_to=recipient,
            max_timeout_seconds=MAX_TIMEOUT_SECONDS,
            asset=profile.asset,
            extra=profile.eip712_domain,
        )
    ]
