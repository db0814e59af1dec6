from typing import NamedTuple, Optional, Tuple

import click
from ape import chain
from ape.contracts import ContractContainer, ContractInstance
from ape.exceptions import ContractLogicError, ContractNotFoundError
from eth_typing import ChecksumAddress

from deployment.params import Deployer
from deployment.utils import has_method


class UpgradeResult(NamedTuple):
    proxy: ContractInstance
    previous_implementation: ChecksumAddress
    implementation: ChecksumAddress
    previous_version: Optional[str]
    version: Optional[str]

    @property
    def upgraded(self) -> bool:
        return self.previous_implementation != self.implementation


def read_version(instance: ContractInstance) -> Optional[str]:
    """
    Returns the version string reported by the contract, or None when its ABI
    has no `version()` or the deployed code does not implement it.
    """
    if not has_method(instance, "version"):
        return None
    try:
        return str(instance.version())
    except ContractLogicError:
        return None


def deployed_at(address: ChecksumAddress, fallback: ContractContainer) -> ContractInstance:
    """
    Returns the contract at `address` with the ABI of the code it currently runs,
    resolving proxies; falls back to `fallback` when that ABI is unknown.
    """
    try:
        return chain.contracts.instance_at(address)
    except ContractNotFoundError:
        return fallback.at(address)


def deploy_token_and_staking(
    deployer: Deployer, token_container: ContractContainer, staking_container: ContractContainer
) -> Tuple[ContractInstance, ContractInstance]:
    """Deploys the token, then the staking contract behind a UUPS proxy."""
    staking_name = staking_container.contract_type.name
    if not deployer.proxy_parameters.contract_needs_proxy(staking_name):
        raise ValueError(f"{staking_name} must be deployed behind a proxy; add a 'proxy' entry.")

    token = deployer.deploy(token_container)
    click.secho(f"Token Deployed on Address: {token.address}", fg="green")

    staking = deployer.deploy(staking_container)
    click.secho(f"Staking Deployed on Address: {staking.address}", fg="green")

    return token, staking


def upgrade_staking(
    deployer: Deployer,
    container: ContractContainer,
    proxy_address: ChecksumAddress,
    implementation_address: Optional[ChecksumAddress] = None,
) -> UpgradeResult:
    """Points the staking proxy at a new implementation and reports the version change."""
    previous_implementation = deployer.get_implementation(proxy_address)
    previous_version = read_version(deployed_at(proxy_address, fallback=container))

    staking = deployer.upgrade(
        container, proxy_address=proxy_address, implementation_address=implementation_address
    )

    result = UpgradeResult(
        proxy=staking,
        previous_implementation=previous_implementation,
        implementation=deployer.get_implementation(proxy_address),
        previous_version=previous_version,
        version=read_version(staking),
    )

    if result.upgraded:
        click.secho("The Implementation has been upgraded", fg="green")
    else:
        click.secho("The Implementation is already up to date", fg="yellow")
    print(
        f"Proxy Address: {staking.address}",
        f"Implementation: {result.previous_implementation} -> {result.implementation}",
        f"Version: {result.previous_version or '(none)'} -> {result.version or '(none)'}",
        sep="\n",
    )
    return result
