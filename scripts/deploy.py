#!/usr/bin/python3

import click
from ape.cli import ConnectedProviderCommand, account_option, network_option

from deployment.confirm import WaitPolicy
from deployment.constants import DEPLOY_PARAMS_FILEPATH
from deployment.options import (
    autosign_option,
    constructor_params_option,
    staking_contract_option,
    token_contract_option,
    verify_option,
    wait_policy_options,
)
from deployment.params import Deployer
from deployment.utils import abort_on_error, get_contract_container
from deployment.workflows import deploy_token_and_staking


@click.command(cls=ConnectedProviderCommand)
@network_option(required=True)
@account_option()
@constructor_params_option(default=DEPLOY_PARAMS_FILEPATH)
@token_contract_option
@staking_contract_option
@verify_option
@autosign_option
@wait_policy_options
def cli(
    network,
    account,
    constructor_params_filepath,
    token_contract,
    staking_contract,
    verify,
    autosign,
    confirmations,
    timeout,
    retries,
    poll_interval,
):
    """
    Deploys the Token contract and the Staking contract behind a UUPS proxy.

    ape run deploy --network polygon:mumbai:node --account deployer
    """
    with abort_on_error():
        token_container = get_contract_container(token_contract)
        staking_container = get_contract_container(staking_contract)
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
        deploy_token_and_staking(deployer, token_container, staking_container)


if __name__ == "__main__":
    cli()
