import os
from contextlib import contextmanager
from decimal import Context, Decimal, InvalidOperation
from pathlib import Path
from typing import Dict

import click
import yaml
from ape import networks, project
from ape.contracts import ContractContainer
from eth_account import Account
from web3 import Web3

from deployment.constants import (
    OZ_DEPENDENCY_NAME,
    OZ_DEPENDENCY_VERSION,
    PRIVATE_KEY_ENVVAR,
    RPC_URL_ENVVARS,
    TOKEN_DECIMALS,
)
from deployment.networks import current_chain_id, current_network_name, is_local_network


class ContractNotFound(ValueError):
    """Raised when a contract name cannot be resolved from the build output."""


def _load_yaml(filepath: Path) -> dict:
    """Loads a YAML file."""
    with open(filepath, "r") as file:
        return yaml.safe_load(file)


def to_token_units(amount) -> int:
    """
    Converts a decimal token amount into the token's 18-decimal integer units.
    Amounts that cannot be represented exactly are rejected rather than truncated.
    """
    if isinstance(amount, bool):
        raise ValueError(f"'{amount}' is not a numeric token amount")
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValueError(f"'{amount}' is not a numeric token amount")
    if not value.is_finite():
        raise ValueError(f"'{amount}' is not a numeric token amount")

    # strip trailing zeros without rounding any significant digit
    value = value.normalize(Context(prec=len(value.as_tuple().digits)))
    if value.as_tuple().exponent < -TOKEN_DECIMALS:
        raise ValueError(f"{amount} has more than {TOKEN_DECIMALS} decimal places")

    try:
        return Web3.to_wei(value, "ether")
    except ValueError as e:
        raise ValueError(f"{amount} is outside the uint256 range in token units: {e}")


def validate_config(config: Dict) -> int:
    """
    Checks the shape of a deployment parameters file, and that it targets the
    connected chain; returns the configured chain id.
    """
    print("Validating parameters YAML...")

    if not isinstance(config, dict):
        raise ValueError("Malformed parameters YAML.")

    deployment = config.get("deployment")
    if not deployment:
        raise ValueError("deployment is not set in params file.")

    config_chain_id = deployment.get("chain_id")
    if not config_chain_id:
        raise ValueError("chain_id is not set in params file.")

    contracts = config.get("contracts")
    if not contracts:
        raise ValueError("Constructor parameters file missing 'contracts' field.")

    config_chain_id = int(config_chain_id)
    chain_id = current_chain_id()
    if config_chain_id != chain_id and not is_local_network():
        raise ValueError(
            f"chain_id in params file ({config_chain_id}) does not match "
            f"chain_id of current network ({chain_id})."
        )

    return config_chain_id


def check_etherscan_plugin() -> None:
    """
    Checks that the ape-etherscan plugin is installed and that
    the appropriate API key environment variable is set.
    """
    if is_local_network():
        # unnecessary for local deployment
        return
    try:
        from ape_etherscan.utils import API_KEY_ENV_KEY_MAP
    except ImportError:
        raise ImportError("Please install the ape-etherscan plugin to verify contracts.")
    ecosystem_name = networks.provider.network.ecosystem.name
    explorer_envvar = API_KEY_ENV_KEY_MAP.get(ecosystem_name)
    if not explorer_envvar:
        raise ValueError(f"No block explorer API key known for ecosystem '{ecosystem_name}'.")
    if not os.environ.get(explorer_envvar):
        raise ValueError(f"{explorer_envvar} is not set.")


def check_rpc_endpoint() -> None:
    """Checks that the RPC endpoint for the current live network is configured."""
    if is_local_network():
        return
    envvar = RPC_URL_ENVVARS.get(current_network_name())
    if envvar and not os.environ.get(envvar):
        raise ValueError(f"{envvar} is not set.")


def check_plugins(verify: bool = False) -> None:
    print("Checking plugins...")
    check_rpc_endpoint()
    if verify:
        check_etherscan_plugin()


def load_private_key() -> str:
    """Reads the signing key from the environment and checks that it is well formed."""
    private_key = os.environ.get(PRIVATE_KEY_ENVVAR)
    if not private_key:
        raise ValueError(f"{PRIVATE_KEY_ENVVAR} is not set.")
    try:
        Account.from_key(private_key)
    except (ValueError, TypeError) as e:
        raise ValueError(f"{PRIVATE_KEY_ENVVAR} is not a valid private key: {e}")
    return private_key


def oz_dependency():
    return project.dependencies[OZ_DEPENDENCY_NAME][OZ_DEPENDENCY_VERSION]


def get_contract_container(contract: str) -> ContractContainer:
    """Resolves a contract factory by name from the project, then from OpenZeppelin."""
    try:
        return getattr(project, contract)
    except AttributeError:
        pass
    try:
        return getattr(oz_dependency(), contract)
    except AttributeError:
        raise ContractNotFound(f"No contract found with name '{contract}'.")


def has_method(contract, method_name: str) -> bool:
    """Returns True if the contract's ABI declares a method with that name."""
    return any(abi.name == method_name for abi in contract.contract_type.methods)


@contextmanager
def abort_on_error():
    """
    Turns any error into a click failure: the message goes to stderr and the
    process exits with status 1.
    """
    try:
        yield
    except (click.ClickException, click.Abort):
        raise
    except Exception as e:
        raise click.ClickException(f"{type(e).__name__}: {e}") from e
