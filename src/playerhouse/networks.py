"""Network profile registry.

Static per-chain configuration: RPC endpoints, contract addresses and
feature flags. Profiles are immutable and selected by network key.
"""

from src.config import config
from src.models import NetworkProfile

NETWORKS: dict[str, NetworkProfile] = {
    "arbitrum": NetworkProfile(
        key="arbitrum",
        name="Arbitrum",
        chain_id=42161,
        public_rpc="https://arb1.arbitrum.io/rpc",
        relay_url="https://rpc.zerodev.app/api/v3/{project_id}/chain/42161",
        gas_price_url="https://public.pimlico.io/v2/42161/rpc",
        action_contract="0xeC3Ad304186235E68CF7Ee88c7da258a87AbF0B8",
        fee_token="0xaf88d065e77c8cC2239327C5EDb3A432268e5831",
        fee_token_paymaster="0x6C973eBe80dCD8660841D4356bf15c32460271C9",
        supports_fee_token_payment=True,
        explorer_url="https://arbiscan.io",
    ),
    "arbitrumSepolia": NetworkProfile(
        key="arbitrumSepolia",
        name="Arbitrum Sepolia",
        chain_id=421614,
        public_rpc="https://sepolia-rollup.arbitrum.io/rpc",
        relay_url="https://rpc.zerodev.app/api/v3/{project_id}/chain/421614",
        gas_price_url="https://public.pimlico.io/v2/421614/rpc",
        action_contract="0x9Dc3e731cfa840c83253b4e16155E0b8a74399ab",
        fee_token="0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d",
        fee_token_paymaster="0x31BE08D380A21fc740883c0BC434FcFc88740b58",
        supports_fee_token_payment=True,
        explorer_url="https://sepolia.arbiscan.io",
    ),
}


def is_known_network(key: str) -> bool:
    """Whether a network key names a registered profile."""
    return key in NETWORKS


def get_profile(key: str) -> NetworkProfile:
    """Look up a network profile.

    Args:
        key: Network key.

    Returns:
        The immutable profile.

    Raises:
        KeyError: If the key is not registered.
    """
    try:
        return NETWORKS[key]
    except KeyError:
        raise KeyError(f"Unknown network '{key}', expected one of: {', '.join(NETWORKS)}") from None


def list_networks() -> list[NetworkProfile]:
    """All registered profiles."""
    return list(NETWORKS.values())


def relay_url_for(profile: NetworkProfile, project_id: str = None) -> str:
    """Resolve the operation relay URL of a profile."""
    return profile.relay_url.format(project_id=project_id if project_id is not None else config.relay_project_id)
