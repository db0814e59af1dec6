#!/usr/bin/python3

import click
from ape.cli import ConnectedProviderCommand, account_option, network_option

from deployment.confirm import WaitPolicy
from deployment.constants import UPGRADE_PARAMS_FILEPATH
from deployment.options import (
    autosign_option,
    constructor_params_option,
    implementation_address_option,
    proxy_address_option,
    upgrade_contract_option,
    verify_option,
    wait_policy_options,
)
from deployment.params import Deployer
from deployment.utils import abort_on_error, get_contract_container
from deployment.workflows import upgrade_staking


@click.command(cls=ConnectedProviderCommand)
@network_option(required=True)
@account_option()
@proxy_address_option
@upgrade_contract_option
@implementation_address_option
@constructor_params_option(default=UPGRADE_PARAMS_FILEPATH)
@verify_option
@autosign_option
@wait_policy_options
def cli(
    network,
    account,
    proxy_address,
    contract_name,
    implementation_address,
    constructor_params_filepath,
    verify,
    autosign,
    confirmations,
    timeout,
    retries,
    poll_interval,
):
    """
    Upgrades a Staking UUPS proxy to a new implementation.

    ape run upgrade --network polygon:mumbai:node --account deployer \\
        --proxy-address 0x22f68ab2f53e4eb0f8797cd5050950c42ab6ae4c
    """
    with abort_on_error():
        container = get_contract_container(contract_name)
        deployer = Deployer.from_yaml(
            filepath=constructor_params_filepath,
            verify=verify,
            account=account,
            autosign=autosign,
            wait_policy=WaitPolicy(
                confirmations=confirmations,
                timeout=timeout,
                retries=retries,
                poll_interval=poll_interval,
            ),
        )
        upgrade_staking(
            deployer,
            container,
            proxy_address=proxy_address,
            implementation_address=implementation_address,
        )


if __name__ == "__main__":
    cli()
