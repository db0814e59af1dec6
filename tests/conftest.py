from collections import namedtuple
from types import SimpleNamespace

import pytest
from ape.exceptions import ContractLogicError, ContractNotFoundError
from eth_utils import to_checksum_address
from hexbytes import HexBytes

from deployment import params, utils, workflows
from deployment.confirm import WaitPolicy
from deployment.constants import EIP1967_IMPLEMENTATION_SLOT

# Common constants
CHAIN_ID = 80001
FAST_WAIT = WaitPolicy(confirmations=1, timeout=0, retries=0, poll_interval=0)

Input = namedtuple("Input", ["name", "type"])
Method = namedtuple("Method", ["name", "inputs"])

UUPS_METHODS = [
    Method(
        "initialize",
        [Input("token", "address"), Input("flagA", "bool"), Input("flagB", "bool")],
    ),
    Method("upgradeToAndCall", [Input("newImplementation", "address"), Input("data", "bytes")]),
    Method("proxiableUUID", []),
]
VIEW_METHODS = {"version", "proxiableUUID"}


# Utility functions
def address(n: int) -> str:
    return to_checksum_address(f"0x{0xA11CE000 + n:040x}")


def implementation_slot(implementation_address: str) -> HexBytes:
    return HexBytes(HexBytes(implementation_address).rjust(32, b"\x00"))


class FakeReceipt:
    def __init__(self, block_number: int):
        self.block_number = block_number
        self.txn_hash = f"0x{block_number:064x}"


class FakeChain:
    """A tiny in-memory chain: deployed code, proxy storage and block height."""

    def __init__(self):
        self.height = 0
        self.code = dict()  # address -> FakeContainer
        self.storage = dict()  # proxy address -> implementation slot
        self.transactions = list()
        self.blocks = SimpleNamespace()
        self.provider = SimpleNamespace(get_storage_at=self.get_storage_at)
        self.contracts = SimpleNamespace(instance_at=self.instance_at)
        self._sync()

    def _sync(self):
        self.blocks.height = self.height

    def mine(self, description) -> FakeReceipt:
        self.height += 1
        self._sync()
        self.transactions.append(description)
        return FakeReceipt(block_number=self.height)

    def get_storage_at(self, address, slot):
        assert slot == EIP1967_IMPLEMENTATION_SLOT
        return self.storage.get(address, HexBytes(b"\x00" * 32))

    def logic_at(self, address):
        """Returns the container whose code runs for calls to `address`."""
        if address in self.storage:
            address = to_checksum_address(self.storage[address][-20:])
        return self.code[address]

    def instance_at(self, address):
        """Wraps `address` with the ABI of the code it runs, like ape's contract cache."""
        if address not in self.code:
            raise ContractNotFoundError(address, False, "polygon:mumbai")
        return FakeInstance(self.logic_at(address), address, self)


class FakeMethod:
    def __init__(self, instance, name):
        self.contract = instance
        self.name = name
        self.abis = [abi for abi in instance.contract_type.methods if abi.name == name]

    def __str__(self):
        return self.name

    def encode_input(self, *args):
        return HexBytes(self.name.encode() + repr(args).encode())

    def __call__(self, *args, sender=None):
        instance = self.contract
        logic = instance.chain.logic_at(instance.address)
        if self.name == "version":
            if logic.version is None:
                raise ContractLogicError("function selector was not recognized")
            return logic.version
        if self.name == "proxiableUUID":
            return HexBytes(logic.proxiable_uuid.to_bytes(32, "big"))
        if self.name == "upgradeToAndCall":
            new_implementation, _ = args
            instance.chain.storage[instance.address] = implementation_slot(new_implementation)
        return instance.chain.mine((self.name, instance.address, args))


class FakeInstance:
    def __init__(self, container, address, chain, receipt=None):
        self.container = container
        self.contract_type = container.contract_type
        self.address = address
        self.chain = chain
        self.receipt = receipt

    def __getattr__(self, name):
        if name.startswith("_") or name not in {m.name for m in self.contract_type.methods}:
            raise AttributeError(name)
        return FakeMethod(self, name)


class FakeContainer:
    def __init__(
        self,
        chain,
        name,
        constructor_inputs=(),
        methods=(),
        version=None,
        proxiable_uuid=EIP1967_IMPLEMENTATION_SLOT,
    ):
        self.chain = chain
        self.contract_type = SimpleNamespace(name=name, methods=list(methods))
        self.constructor = SimpleNamespace(abi=SimpleNamespace(inputs=list(constructor_inputs)))
        self.version = version
        self.proxiable_uuid = proxiable_uuid

    def at(self, address):
        return FakeInstance(self, address, self.chain)


class FakeAccount:
    def __init__(self, chain):
        self.address = address(0)
        self.chain = chain
        self.autosign = None
        self.deployments = list()
        self._nonce = 0

    def set_autosign(self, enabled):
        self.autosign = enabled

    def deploy(self, container, *args, publish=False):
        self._nonce += 1
        contract_address = address(self._nonce)
        name = container.contract_type.name
        receipt = self.chain.mine(("deploy", name, args))
        self.chain.code[contract_address] = container
        if name == "ERC1967Proxy":
            implementation, _data = args
            self.chain.storage[contract_address] = implementation_slot(implementation)
        self.deployments.append((name, args, publish))
        return FakeInstance(container, contract_address, self.chain, receipt=receipt)


# Fixtures
@pytest.fixture(autouse=True)
def fresh_deployer_state():
    params.Deployer._set_account(None)
    params.Deployer._reset_deployments()
    yield
    params.Deployer._set_account(None)
    params.Deployer._reset_deployments()


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def containers(chain):
    token = FakeContainer(
        chain,
        "Token",
        constructor_inputs=[
            Input("name", "string"),
            Input("symbol", "string"),
            Input("initialSupply", "uint256"),
        ],
    )
    staking = FakeContainer(chain, "Staking", methods=UUPS_METHODS)
    staking_v2 = FakeContainer(
        chain, "StakingV2", methods=UUPS_METHODS + [Method("version", [])], version="v2"
    )
    staking_v3 = FakeContainer(chain, "StakingV3", methods=UUPS_METHODS)
    not_uups = FakeContainer(chain, "NotUUPS")
    proxy = FakeContainer(
        chain,
        "ERC1967Proxy",
        constructor_inputs=[Input("implementation", "address"), Input("_data", "bytes")],
    )
    return SimpleNamespace(
        Token=token,
        Staking=staking,
        StakingV2=staking_v2,
        StakingV3=staking_v3,
        NotUUPS=not_uups,
        ERC1967Proxy=proxy,
    )


@pytest.fixture
def network(monkeypatch, chain, containers):
    """Patches the connected provider and project with the in-memory fakes."""
    project = SimpleNamespace(
        Token=containers.Token,
        Staking=containers.Staking,
        StakingV2=containers.StakingV2,
        StakingV3=containers.StakingV3,
        NotUUPS=containers.NotUUPS,
    )
    oz = SimpleNamespace(ERC1967Proxy=containers.ERC1967Proxy)

    monkeypatch.setattr(utils, "project", project)
    monkeypatch.setattr(utils, "oz_dependency", lambda: oz)
    monkeypatch.setattr(utils, "is_local_network", lambda: True)
    monkeypatch.setattr(utils, "current_chain_id", lambda: CHAIN_ID)
    monkeypatch.setattr(params, "chain", chain)
    monkeypatch.setattr(params, "describe_network", lambda: ["Network: fake"])
    monkeypatch.setattr(workflows, "chain", chain)
    return chain


@pytest.fixture
def account(chain):
    return FakeAccount(chain)


@pytest.fixture
def deploy_config():
    return {
        "deployment": {"name": "staking", "chain_id": CHAIN_ID},
        "constants": {"TOKEN_NAME": "Test Token", "TOKEN_SYMBOL": "TST", "SUPPLY": 1_000_000},
        "contracts": [
            {
                "Token": {
                    "constructor": {
                        "name": "$TOKEN_NAME",
                        "symbol": "$TOKEN_SYMBOL",
                        "initialSupply": "$units:SUPPLY",
                    }
                }
            },
            {
                "Staking": {
                    "proxy": {"initializer": "initialize", "args": ["$Token", False, False]}
                }
            },
        ],
    }


@pytest.fixture
def upgrade_config():
    return {
        "deployment": {"name": "staking-upgrade", "chain_id": CHAIN_ID},
        "contracts": ["StakingV2", "StakingV3", "NotUUPS"],
    }


@pytest.fixture
def make_deployer(network, account):
    def _make(config, **kwargs):
        kwargs.setdefault("autosign", True)
        kwargs.setdefault("wait_policy", FAST_WAIT)
        kwargs.setdefault("verify", False)
        return params.Deployer(config=config, path="test.yml", account=account, **kwargs)

    return _make
