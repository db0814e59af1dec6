#!/usr/bin/env python3

import os

from ape_accounts import import_account_from_private_key

from deployment.constants import (
    DEFAULT_DEPLOYER_ALIAS,
    DEPLOYER_ALIAS_ENVVAR,
    DEPLOYER_PASSPHRASE_ENVVAR,
)
from deployment.utils import load_private_key


def main():
    """
    Imports the signing key from PRIVATE_KEY into the ape keystore, so that
    deployment scripts can use it with `--account <alias>`.
    """
    private_key = load_private_key()
    alias = os.environ.get(DEPLOYER_ALIAS_ENVVAR, DEFAULT_DEPLOYER_ALIAS)
    try:
        passphrase = os.environ[DEPLOYER_PASSPHRASE_ENVVAR]
    except KeyError:
        raise Exception(
            f"There are missing environment variables. Please set {DEPLOYER_PASSPHRASE_ENVVAR}."
        )
    account = import_account_from_private_key(alias, passphrase, private_key)
    print(f"Account imported: {account.address} (alias '{alias}')")


if __name__ == "__main__":
    main()
