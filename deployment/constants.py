from pathlib import Path

import deployment

#
# Filesystem
#

DEPLOYMENT_DIR = Path(deployment.__file__).parent
CONSTRUCTOR_PARAMS_DIR = DEPLOYMENT_DIR / "constructor_params"

#
# Networks
#

MUMBAI = "mumbai"
LOCAL_NETWORKS = ["local", "mainnet-fork", "mumbai-fork"]

# network name -> environment variable holding its RPC endpoint
RPC_URL_ENVVARS = {
    MUMBAI: "MUMBAI_RPC_URL",
}

PRIVATE_KEY_ENVVAR = "PRIVATE_KEY"
DEPLOYER_ALIAS_ENVVAR = "DEPLOYER_ALIAS"
DEPLOYER_PASSPHRASE_ENVVAR = "DEPLOYER_PASSPHRASE"
DEFAULT_DEPLOYER_ALIAS = "deployer"

#
# Contracts
#

TOKEN = "Token"
STAKING = "Staking"
STAKING_V2 = "StakingV2"

TOKEN_DECIMALS = 18

OZ_DEPENDENCY_NAME = "openzeppelin"
OZ_DEPENDENCY_VERSION = "5.0.0"
PROXY_CONTRACT = "ERC1967Proxy"

# EIP1967 Implementation slot - https://eips.ethereum.org/EIPS/eip-1967#logic-contract-address
EIP1967_IMPLEMENTATION_SLOT = 0x360894A13BA1A3210667C828492DB98DCA3E2076CC3735A920A3CA505D382BBC

DEPLOY_PARAMS_FILEPATH = CONSTRUCTOR_PARAMS_DIR / MUMBAI / "deploy-staking.yml"
UPGRADE_PARAMS_FILEPATH = CONSTRUCTOR_PARAMS_DIR / MUMBAI / "upgrade-staking.yml"

#
# Confirmations
#

DEFAULT_CONFIRMATIONS = 1
DEFAULT_CONFIRMATION_TIMEOUT = 300  # seconds, per attempt
DEFAULT_CONFIRMATION_RETRIES = 3
DEFAULT_POLL_INTERVAL = 5  # seconds
