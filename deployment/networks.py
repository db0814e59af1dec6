from typing import List

from ape import networks

from deployment.constants import LOCAL_NETWORKS


def is_local_network() -> bool:
    """Returns True when connected to a development network (local or fork)."""
    return networks.provider.network.name in LOCAL_NETWORKS


def current_network_name() -> str:
    return networks.provider.network.name


def current_chain_id() -> int:
    return networks.provider.network.chain_id


def describe_network() -> List[str]:
    """Human-readable summary of the connected provider."""
    network = networks.provider.network
    return [
        f"Ecosystem: {network.ecosystem.name}",
        f"Network: {network.name}",
        f"Chain ID: {network.chain_id}",
        f"Gas Price: {networks.provider.gas_price}",
    ]
