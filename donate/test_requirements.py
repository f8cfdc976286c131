import unittest

from pydantic import ValidationError

from donate.errors import UnsupportedNetwork
from donate.networks import NETWORK_PROFILES, get_network_profile
from donate.requirements import build_payment_requirements, cents_to_usdc_units, format_dollars

RECIPIENT = '0x1234567890abcdef1234567890ABCDEF12345678'
RESOURCE = 'https://donate.example/api/donate/0x1234567890abcdef1234567890ABCDEF12345678/base'


class BuildPaymentRequirementsTests(unittest.TestCase):
    def test_builds_single_exact_requirement(self):
        requirements = build_payment_requirements(RECIPIENT, 'base', 100, RESOURCE)

        self.assertEqual(len(requirements), 1)
        self.assertEqual(
            requirements[0].model_dump(by_alias=True),
            {
                'scheme': 'exact',
                'network': 'eip155:8453',
                'amount': '1000000',
                'resource': RESOURCE,
                'description': f'Donation of $1.00 to {RECIPIENT}',
                'mimeType': 'application/json',
                'payTo': RECIPIENT,
                'maxTimeoutSeconds': 300,
                'asset': '0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913',
                'extra': {'name': 'USD Coin', 'version': '2'},
            },
        )

    def test_amount_conversion_is_exact_on_every_network(self):
        for network in NETWORK_PROFILES:
            with self.subTest(network=network):
                requirement = build_payment_requirements(RECIPIENT, network, 300, RESOURCE)[0]
                self.assertEqual(requirement.amount, '3000000')
                self.assertEqual(requirement.network, get_network_profile(network).caip2)

    def test_large_amounts_do_not_lose_precision(self):
        requirement = build_payment_requirements(RECIPIENT, 'mainnet', 123456789012345, RESOURCE)[0]
        self.assertEqual(requirement.amount, '1234567890123450000')

    def test_is_deterministic(self):
        first = build_payment_requirements(RECIPIENT, 'sepolia', 725, RESOURCE)
        second = build_payment_requirements(RECIPIENT, 'sepolia', 725, RESOURCE)

        self.assertEqual(first, second)
        self.assertEqual(first[0].model_dump_json(by_alias=True), second[0].model_dump_json(by_alias=True))

    def test_only_resource_depends_on_url(self):
        first = build_payment_requirements(RECIPIENT, 'base', 100, RESOURCE)[0]
        second = build_payment_requirements(RECIPIENT, 'base', 100, RESOURCE + '?amount=100')[0]

        self.assertNotEqual(first.resource, second.resource)
        self.assertEqual(
            first.model_dump(exclude={'resource'}),
            second.model_dump(exclude={'resource'}),
        )

    def test_unknown_network_is_rejected(self):
        for network in ('unknown-network', 'Base', 'eip155:8453', ''):
            with self.subTest(network=network):
                with self.assertRaises(UnsupportedNetwork):
                    build_payment_requirements(RECIPIENT, network, 100, RESOURCE)

    def test_description_rounds_dollars_to_cents(self):
        requirement = build_payment_requirements(RECIPIENT, 'base', 5, RESOURCE)[0]
        self.assertEqual(requirement.description, f'Donation of $0.05 to {RECIPIENT}')

    def test_requirements_are_immutable(self):
        requirement = build_payment_requirements(RECIPIENT, 'base', 100, RESOURCE)[0]
        with self.assertRaises(ValidationError):
            requirement.amount = '1'


class HelperTests(unittest.TestCase):
    def test_cents_to_usdc_units(self):
        self.assertEqual(cents_to_usdc_units(1), 10_000)
        self.assertEqual(cents_to_usdc_units(300), 3_000_000)

    def test_format_dollars(self):
        self.assertEqual(format_dollars(100), '1.00')
        self.assertEqual(format_dollars(1234), '12.34')
        self.assertEqual(format_dollars(7), '0.07')


class NetworkProfileTests(unittest.TestCase):
    def test_profiles_cover_two_mainnet_testnet_pairs(self):
        chain_ids = {profile.slug: profile.chain_id for profile in NETWORK_PROFILES.values()}
        self.assertEqual(chain_ids, {'base': 8453, 'base-sepolia': 84532, 'mainnet': 1, 'sepolia': 11155111})

    def test_caip2_matches_chain_id(self):
        for profile in NETWORK_PROFILES.values():
            with self.subTest(network=profile.slug):
                self.assertEqual(profile.caip2, f'eip155:{profile.chain_id}')
