"""
Static USDC configuration for every chain a donation can be paid on.
"""
from dataclasses import dataclass
from typing import Dict

from donate.errors import UnsupportedNetwork


@dataclass(frozen=True)
class NetworkProfile:
    """Chain identifiers and stablecoin metadata for one network."""
    slug: str
    chain_id: int
    caip2: str
    asset: str
    name: str
    eip712_name: str
    eip712_version: str

    @property
    def eip712_domain(self) -> Dict[str, str]:
        return {'name': self.eip712_name, 'version': self.eip712_version}

    def describe(self) -> Dict[str, object]:
        return {
            'network': self.slug,
            'chainId': self.chain_id,
            'caip2': self.caip2,
            'asset': self.asset,
            'name': self.name,
        }


NETWORK_PROFILES: Dict[str, NetworkProfile] = {
    profile.slug: profile
    for profile in (
        NetworkProfile(
            slug='base',
            chain_id=8453,
            caip2='eip155:8453',
            asset='0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913',
            name='Base',
            eip712_name='USD Coin',
            eip712_version='2',
        ),
        NetworkProfile(
            slug='base-sepolia',
            chain_id=84532,
            caip2='eip155:84532',
            asset='0x036CbD53842c5426634e7929541eC2318f3dCF7e',
            name='Base Sepolia',
            eip712_name='USDC',
            eip712_version='2',
        ),
        NetworkProfile(
            slug='mainnet',
            chain_id=1,
            caip2='eip155:1',
            asset='0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48',
            name='Ethereum',
            eip712_name='USD Coin',
            eip712_version='2',
        ),
        NetworkProfile(
            slug='sepolia',
            chain_id=11155111,
            caip2='eip155:11155111',
            asset='0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238',
            name='Sepolia',
            eip712_name='USDC',
            eip712_version='2',
        ),
    )
}


def get_network_profile(network: str) -> NetworkProfile:
    """
    Look up the profile for a network slug.

    Raises:
        UnsupportedNetwork: If the slug is not configured. Matching is exact.
    """
    profile = NETWORK_PROFILES.get(network)
    if profile is None:
        raise UnsupportedNetwork()
    return profile


def is_supported_network(network: str) -> bool:
    return network in NETWORK_PROFILES
