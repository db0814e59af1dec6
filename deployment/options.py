from pathlib import Path

import click

from deployment.constants import (
    DEFAULT_CONFIRMATION_RETRIES,
    DEFAULT_CONFIRMATION_TIMEOUT,
    DEFAULT_CONFIRMATIONS,
    DEFAULT_POLL_INTERVAL,
    STAKING,
    STAKING_V2,
    TOKEN,
)
from deployment.types import ChecksumAddress, MinInt


def constructor_params_option(default: Path):
    return click.option(
        "--constructor-params",
        "-p",
        "constructor_params_filepath",
        help="Deployment parameters YAML file",
        type=click.Path(dir_okay=False, exists=True, path_type=Path),
        default=default,
        show_default=True,
    )


verify_option = click.option(
    "--verify/--no-verify",
    help="Publish contract sources to the network's block explorer",
    default=False,
)

autosign_option = click.option(
    "--autosign",
    help="Sign transactions without prompting for confirmation",
    is_flag=True,
    default=False,
)

token_contract_option = click.option(
    "--token-contract",
    help="Name of the token contract artifact",
    type=str,
    default=TOKEN,
    show_default=True,
)

staking_contract_option = click.option(
    "--staking-contract",
    help="Name of the staking contract artifact",
    type=str,
    default=STAKING,
    show_default=True,
)

upgrade_contract_option = click.option(
    "--contract",
    "-c",
    "contract_name",
    help="Name of the new implementation contract; must be listed under 'contracts' "
    "in the parameters file",
    type=str,
    default=STAKING_V2,
    show_default=True,
)

proxy_address_option = click.option(
    "--proxy-address",
    help="Address of the UUPS proxy to upgrade",
    type=ChecksumAddress(),
    required=True,
)

implementation_address_option = click.option(
    "--implementation-address",
    help="Use an already deployed implementation instead of deploying a new one",
    type=ChecksumAddress(),
    required=False,
)


def wait_policy_options(func):
    """Options controlling how long to wait for transaction confirmations."""
    options = [
        click.option(
            "--confirmations",
            help="Blocks to wait for after a transaction is included",
            type=MinInt(1),
            default=DEFAULT_CONFIRMATIONS,
            show_default=True,
        ),
        click.option(
            "--timeout",
            help="Seconds to wait for confirmation on each attempt",
            type=MinInt(1),
            default=DEFAULT_CONFIRMATION_TIMEOUT,
            show_default=True,
        ),
        click.option(
            "--retries",
            help="Further attempts after a timed out or failed wait",
            type=MinInt(0),
            default=DEFAULT_CONFIRMATION_RETRIES,
            show_default=True,
        ),
        click.option(
            "--poll-interval",
            help="Seconds between chain height checks",
            type=click.FloatRange(min=0),
            default=DEFAULT_POLL_INTERVAL,
            show_default=True,
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func
