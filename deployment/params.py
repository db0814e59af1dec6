import typing
from abc import ABC, abstractmethod
from collections import OrderedDict
from pathlib import Path
from typing import Any, List, Optional

from ape import chain
from ape.api import AccountAPI, ReceiptAPI
from ape.cli.choices import select_account
from ape.contracts.base import ContractContainer, ContractInstance, ContractTransactionHandler
from ape.utils import ZERO_ADDRESS
from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address, to_int
from ethpm_types import MethodABI
from web3.auto import w3

from deployment.confirm import WaitPolicy, _confirm_resolution, _continue, await_confirmation
from deployment.constants import EIP1967_IMPLEMENTATION_SLOT, PROXY_CONTRACT
from deployment.networks import describe_network
from deployment.utils import (
    _load_yaml,
    check_plugins,
    get_contract_container,
    has_method,
    to_token_units,
    validate_config,
)

CONTRACT_CONSTRUCTOR_PARAMETER_KEY = "constructor"
CONTRACT_PROXY_PARAMETER_KEY = "proxy"


class UpgradeError(ValueError):
    """Raised when a proxy cannot be (or was not) upgraded to an implementation."""


class VariableContext:
    def __init__(
        self,
        contract_names: List[str],
        contract_name: str,
        constants: typing.Dict[str, Any] = None,
    ):
        self.contract_names = contract_names or list()
        self.contract_name = contract_name
        self.constants = constants or dict()


# Variables


class Variable(ABC):
    VARIABLE_PREFIX = "$"

    @abstractmethod
    def resolve(self) -> Any:
        raise NotImplementedError

    @classmethod
    def is_variable(cls, param: Any) -> bool:
        """Returns True if the param is a variable."""
        return isinstance(param, str) and param.startswith(cls.VARIABLE_PREFIX)


class DeployerAccount(Variable):
    DEPLOYER_INDICATOR = "deployer"

    @classmethod
    def is_deployer(cls, value: str) -> bool:
        """Returns True if the variable is a special deployer variable."""
        return value == cls.DEPLOYER_INDICATOR

    def resolve(self) -> Any:
        deployer_account = Deployer.get_account()
        if deployer_account is None:
            return ZERO_ADDRESS
        return deployer_account.address


class Constant(Variable):
    def __init__(self, constant_name: str, context: VariableContext):
        try:
            self.constant_value = context.constants[constant_name]
        except KeyError:
            raise ValueError(f"Constant '{constant_name}' not found in deployment file.")

    @classmethod
    def is_constant(cls, value: str) -> bool:
        """Returns True if the variable is a deployment constant."""
        return value.isupper()

    def resolve(self) -> Any:
        return self.constant_value


class TokenUnits(Variable):
    """A decimal token amount (literal or constant) expressed in fixed-point units."""

    UNITS_PREFIX = "units:"

    def __init__(self, variable: str, context: VariableContext):
        amount = variable[len(self.UNITS_PREFIX) :].strip()
        if Constant.is_constant(amount):
            amount = Constant(amount, context).resolve()
        # converted eagerly so an inexact amount fails before anything is deployed
        self.units = to_token_units(amount)

    @classmethod
    def is_units(cls, value: str) -> bool:
        return value.startswith(cls.UNITS_PREFIX)

    def resolve(self) -> Any:
        return self.units


class ContractName(Variable):
    def __init__(self, contract_name: str, context: VariableContext):
        if contract_name not in context.contract_names:
            raise ValueError(f"Contract name {contract_name} not found")

        self.contract_name = contract_name

    def resolve(self) -> Any:
        """Resolves a contract address; proxied contracts resolve to their proxy."""
        contract_instance = Deployer.get_deployment(self.contract_name)
        if contract_instance is None:
            # eager validation
            return ZERO_ADDRESS
        return contract_instance.address


def _resolve_param(value: Any) -> Any:
    """Resolves a single parameter value or a list of parameter values."""
    if isinstance(value, list):
        return [_resolve_param(v) for v in value]

    if isinstance(value, Variable):
        return value.resolve()

    return value  # literally a value


def _resolve_params(parameters: OrderedDict) -> OrderedDict:
    resolved_parameters = OrderedDict()
    for name, value in parameters.items():
        resolved_parameters[name] = _resolve_param(value)

    return resolved_parameters


def _variable_from_value(variable: Any, context: VariableContext) -> Variable:
    variable = variable[len(Variable.VARIABLE_PREFIX) :]
    if DeployerAccount.is_deployer(variable):
        return DeployerAccount()
    elif TokenUnits.is_units(variable):
        return TokenUnits(variable, context)
    elif Constant.is_constant(variable):
        return Constant(variable, context)
    else:
        return ContractName(variable, context)


def _process_raw_value(value: Any, variable_context: VariableContext) -> Any:
    if isinstance(value, list):
        return [_process_raw_value(v, variable_context) for v in value]

    if Variable.is_variable(value):
        value = _variable_from_value(value, variable_context)

    return value


def _process_raw_values(values: OrderedDict, variable_context: VariableContext) -> OrderedDict:
    processed_parameters = OrderedDict()
    for name, value in values.items():
        processed_parameters[name] = _process_raw_value(value, variable_context)

    return processed_parameters


def _get_contract_entries(config: typing.Dict) -> List[typing.Tuple[str, typing.Dict]]:
    """Returns (name, data) pairs for every contract in the config, preserving order."""
    entries = list()
    for contract_info in config["contracts"]:
        if isinstance(contract_info, str):
            entries.append((contract_info, dict()))
        elif isinstance(contract_info, dict) and len(contract_info) == 1:
            contract_name, contract_data = list(contract_info.items())[0]
            entries.append((contract_name, contract_data or dict()))
        else:
            raise ValueError("Malformed constructor parameters YAML.")

    return entries


def _validate_method_args(
    method_abis: List[MethodABI], args: typing.Sequence[Any]
) -> typing.Dict[str, Any]:
    """Validates the transaction arguments against the function ABI."""
    if len(method_abis) == 0:
        raise ValueError("No method abis provided for validation of args")

    abis_matching_args_length = [abi for abi in method_abis if len(abi.inputs) == len(args)]
    for abi in abis_matching_args_length:
        named_args = {}
        for arg, abi_input in zip(args, abi.inputs):
            if not w3.is_encodable(abi_input.type, arg):
                break
            named_args[abi_input.name] = arg
        else:
            return named_args
    raise ValueError(
        f"Could not find ABI for '{method_abis[0].name}' with {len(args)} arg(s) and given type(s)"
    )


def _validate_constructor_abi_inputs(
    contract_name: str,
    abi_inputs: List[Any],
    resolved_parameters: OrderedDict,
) -> None:
    """Validates the constructor parameters against the constructor ABI."""
    if len(resolved_parameters) != len(abi_inputs):
        raise ConstructorParameters.Invalid(
            f"Constructor parameters length mismatch - "
            f"{contract_name} ABI requires {len(abi_inputs)}, Got {len(resolved_parameters)}."
        )

    codex = enumerate(zip(abi_inputs, resolved_parameters.items()), start=0)
    for position, (abi_input, resolved_input) in codex:
        name, value = resolved_input
        if abi_input.name != name:
            raise ConstructorParameters.Invalid(
                f"{contract_name} constructor parameter '{name}' at position {position} does not "
                f"match the expected ABI name '{abi_input.name}'."
            )

        if not w3.is_encodable(abi_input.type, value):
            raise ConstructorParameters.Invalid(
                f"Constructor param name '{name}' at position {position} has a value '{value}' "
                f"whose type does not match expected ABI type '{abi_input.type}'"
            )


class ConstructorParameters:
    """Represents the constructor parameters for a set of contracts."""

    class Invalid(Exception):
        """Raised when the constructor parameters are invalid"""

    def __init__(self, parameters: OrderedDict):
        self.parameters = parameters
        self.validate()

    @classmethod
    def from_config(cls, config: typing.Dict) -> "ConstructorParameters":
        print("Processing contract constructor parameters...")
        entries = _get_contract_entries(config)
        contract_names = [name for name, _ in entries]
        constants = config.get("constants")

        contracts_config = OrderedDict()
        for contract_name, contract_data in entries:
            raw_values = contract_data.get(CONTRACT_CONSTRUCTOR_PARAMETER_KEY) or OrderedDict()
            if not isinstance(raw_values, dict):
                raise ValueError(f"Malformed constructor parameter config for {contract_name}.")
            contracts_config[contract_name] = _process_raw_values(
                raw_values,
                VariableContext(
                    contract_names=contract_names, constants=constants, contract_name=contract_name
                ),
            )

        return cls(parameters=contracts_config)

    def validate(self) -> None:
        """Resolves every contract artifact and checks its parameters against the ABI."""
        for contract_name, parameters in self.parameters.items():
            contract_container = get_contract_container(contract_name)
            _validate_constructor_abi_inputs(
                contract_name=contract_name,
                abi_inputs=contract_container.constructor.abi.inputs,
                resolved_parameters=_resolve_params(parameters),
            )

    def resolve(self, contract_name: str) -> OrderedDict:
        """Resolves the constructor parameters for a single contract."""
        try:
            parameters = self.parameters[contract_name]
        except KeyError:
            raise ValueError(f"Contract '{contract_name}' is not part of the deployment config.")
        return _resolve_params(parameters)


class ProxyParameters:
    """Initialization data for contracts deployed behind a UUPS (ERC1967) proxy."""

    INITIALIZER = "initializer"
    ARGS = "args"
    DEFAULT_INITIALIZER = "initialize"

    class Invalid(Exception):
        """Raised when the proxy parameters are invalid"""

    class ProxyInfo(typing.NamedTuple):
        initializer: Optional[str]
        args: List[Any]

    def __init__(self, contracts_proxy_info: OrderedDict):
        self.contracts_proxy_info = contracts_proxy_info
        self.proxy_container = None
        if contracts_proxy_info:
            self.proxy_container = get_contract_container(PROXY_CONTRACT)
        self.validate()

    @classmethod
    def from_config(cls, config: typing.Dict) -> "ProxyParameters":
        print("Processing proxy parameters...")
        entries = _get_contract_entries(config)
        contract_names = [name for name, _ in entries]
        constants = config.get("constants")

        contracts_proxy_info = OrderedDict()
        for contract_name, contract_data in entries:
            if CONTRACT_PROXY_PARAMETER_KEY not in contract_data:
                continue
            contracts_proxy_info[contract_name] = cls._generate_proxy_info(
                contract_data[CONTRACT_PROXY_PARAMETER_KEY] or dict(),
                VariableContext(
                    contract_names=contract_names, constants=constants, contract_name=contract_name
                ),
            )

        return cls(contracts_proxy_info=contracts_proxy_info)

    @classmethod
    def _generate_proxy_info(cls, proxy_data: typing.Dict, context: VariableContext) -> ProxyInfo:
        initializer = proxy_data.get(cls.INITIALIZER, cls.DEFAULT_INITIALIZER)
        args = proxy_data.get(cls.ARGS) or list()
        if not isinstance(args, list):
            raise cls.Invalid(f"Initializer args for {context.contract_name} must be a list.")
        if initializer is None and args:
            raise cls.Invalid(
                f"Initializer args given for {context.contract_name} without an initializer."
            )

        return cls.ProxyInfo(initializer=initializer, args=_process_raw_value(args, context))

    def validate(self) -> None:
        for contract_name, proxy_info in self.contracts_proxy_info.items():
            if proxy_info.initializer is None:
                continue
            contract_container = get_contract_container(contract_name)
            method_abis = [
                abi
                for abi in contract_container.contract_type.methods
                if abi.name == proxy_info.initializer
            ]
            if not method_abis:
                raise self.Invalid(
                    f"{contract_name} has no initializer named '{proxy_info.initializer}'."
                )
            try:
                _validate_method_args(method_abis, _resolve_param(proxy_info.args))
            except ValueError as e:
                raise self.Invalid(f"Invalid initializer args for {contract_name}: {e}")

    def contract_needs_proxy(self, contract_name) -> bool:
        return contract_name in self.contracts_proxy_info

    def resolve(self, contract_name: str) -> ProxyInfo:
        """Resolves the initializer call for a single contract."""
        proxy_info = self.contracts_proxy_info.get(contract_name)
        if not proxy_info:
            raise ValueError(f"Unexpected contract to proxy: {contract_name}")
        return self.ProxyInfo(
            initializer=proxy_info.initializer, args=_resolve_param(proxy_info.args)
        )


class Transactor:
    """
    Represents an ape account plus validated/annotated transaction execution.
    """

    def __init__(
        self,
        account: typing.Optional[AccountAPI] = None,
        autosign: bool = False,
        wait_policy: typing.Optional[WaitPolicy] = None,
    ):
        if account is None:
            self._account = select_account()
        else:
            self._account = account
        if autosign:
            print("WARNING: Autosign is enabled. Transactions will be signed automatically.")
        self._autosign = autosign
        self._account.set_autosign(autosign)
        self.wait_policy = wait_policy or WaitPolicy()

    def get_account(self) -> AccountAPI:
        """Returns the transactor account."""
        return self._account

    def await_confirmation(self, receipt: ReceiptAPI) -> ReceiptAPI:
        await_confirmation(receipt, self.wait_policy, get_height=lambda: chain.blocks.height)
        return receipt

    def transact(self, method: ContractTransactionHandler, *args) -> ReceiptAPI:
        named_args = _validate_method_args(method_abis=method.abis, args=args)
        base_message = (
            f"\nTransacting {method.contract.contract_type.name}"
            f"[{method.contract.address[:10]}].{method}"
        )
        if named_args:
            pretty_args = "\n\t".join(f"{k}={v}" for k, v in named_args.items())
            message = f"{base_message} with arguments:\n\t{pretty_args}"
        else:
            message = f"{base_message} with no arguments"
        print(message)
        if not self._autosign:
            _continue()

        receipt = method(*args, sender=self._account)
        return self.await_confirmation(receipt)


class Deployer(Transactor):
    """
    Represents an ape account plus deployment parameters for a set of contracts,
    plus validated/annotated execution of deployments and UUPS proxy upgrades.
    """

    __DEPLOYER_ACCOUNT: AccountAPI = None
    __DEPLOYMENTS: typing.Dict[str, ContractInstance] = dict()

    def __init__(
        self,
        config: typing.Dict,
        path: Path,
        verify: bool,
        account: typing.Optional[AccountAPI] = None,
        autosign: bool = False,
        wait_policy: typing.Optional[WaitPolicy] = None,
    ):
        super().__init__(account, autosign, wait_policy)

        check_plugins(verify=verify)
        self.path = path
        self.config = config
        self.chain_id = validate_config(config=self.config)

        self._set_account(self._account)
        self._reset_deployments()
        self.constructor_parameters = ConstructorParameters.from_config(self.config)
        self.proxy_parameters = ProxyParameters.from_config(self.config)

        self.verify = verify
        self._print_deployment_info()

        if not self._autosign:
            # Confirms the start of the deployment.
            _continue()

    @classmethod
    def from_yaml(cls, filepath: Path, *args, **kwargs) -> "Deployer":
        config = _load_yaml(filepath)
        return cls(config=config, path=filepath, *args, **kwargs)

    @classmethod
    def get_account(cls) -> AccountAPI:
        """Returns the deployer account."""
        return cls.__DEPLOYER_ACCOUNT

    @classmethod
    def _set_account(cls, deployer: AccountAPI) -> None:
        """Sets the deployer account."""
        cls.__DEPLOYER_ACCOUNT = deployer

    @classmethod
    def get_deployment(cls, contract_name: str) -> Optional[ContractInstance]:
        """Returns the instance deployed for a contract name during this run, if any."""
        return cls.__DEPLOYMENTS.get(contract_name)

    @classmethod
    def _reset_deployments(cls) -> None:
        cls.__DEPLOYMENTS = dict()

    @classmethod
    def _register_deployment(cls, contract_name: str, instance: ContractInstance) -> None:
        cls.__DEPLOYMENTS[contract_name] = instance

    def _get_kwargs(self) -> typing.Dict[str, Any]:
        """Returns the deployment kwargs."""
        return {"publish": self.verify}

    def deploy(self, container: ContractContainer) -> ContractInstance:
        contract_name = container.contract_type.name

        resolved_constructor_params = self.constructor_parameters.resolve(contract_name)
        instance = self._deploy_contract(container, resolved_constructor_params)

        if self.proxy_parameters.contract_needs_proxy(contract_name):
            instance = self._deploy_proxy(container, implementation=instance)

        self._register_deployment(contract_name, instance)
        return instance

    def _deploy_contract(
        self, container: ContractContainer, resolved_params: OrderedDict
    ) -> ContractInstance:
        contract_name = container.contract_type.name
        if not self._autosign:
            _confirm_resolution(resolved_params, contract_name)
        deployment_params = [container, *resolved_params.values()]
        kwargs = self._get_kwargs()

        deployer_account = self.get_account()
        instance = deployer_account.deploy(*deployment_params, **kwargs)
        self.await_confirmation(instance.receipt)
        return instance

    def _deploy_proxy(
        self, container: ContractContainer, implementation: ContractInstance
    ) -> ContractInstance:
        contract_name = container.contract_type.name
        initializer, args = self.proxy_parameters.resolve(contract_name)
        if initializer is None:
            data = b""
        else:
            data = getattr(implementation, initializer).encode_input(*args)

        proxy_container = self.proxy_parameters.proxy_container
        print(
            f"\nDeploying {proxy_container.contract_type.name} "
            f"contract to proxy {contract_name} at {implementation.address}."
        )
        proxy_params = OrderedDict({"implementation": implementation.address, "_data": data})
        proxy_contract = self._deploy_contract(proxy_container, resolved_params=proxy_params)
        print(
            f"\nWrapping {contract_name} into {proxy_contract.contract_type.name} "
            f"at {proxy_contract.address}."
        )
        return container.at(proxy_contract.address)

    def get_implementation(self, proxy_address: ChecksumAddress) -> ChecksumAddress:
        """Reads the implementation address from the proxy's EIP1967 storage slot."""
        slot = chain.provider.get_storage_at(
            address=proxy_address, slot=EIP1967_IMPLEMENTATION_SLOT
        )
        if to_int(slot) == 0:
            raise UpgradeError(
                f"Implementation slot for contract at {proxy_address} is empty. "
                "Are you sure this is an EIP1967-compatible proxy?"
            )
        return to_checksum_address(slot[-20:])

    def upgrade(
        self,
        container: ContractContainer,
        proxy_address: ChecksumAddress,
        implementation_address: Optional[ChecksumAddress] = None,
        data=b"",
    ) -> ContractInstance:
        # fail before deploying anything if the target is not a proxy
        self.get_implementation(proxy_address)
        if implementation_address:
            implementation = container.at(implementation_address)
        else:
            implementation = self.deploy(container)
        return self.upgradeTo(implementation, proxy_address, data)

    def upgradeTo(
        self, implementation: ContractInstance, proxy_address: ChecksumAddress, data=b""
    ) -> ContractInstance:
        container = get_contract_container(implementation.contract_type.name)
        wrapped_instance = container.at(proxy_address)

        current_implementation = self.get_implementation(proxy_address)
        if current_implementation == implementation.address:
            print(
                f"\n(i) Proxy {proxy_address} already points to {implementation.address}; "
                "nothing to upgrade."
            )
            return wrapped_instance

        self._check_uups_compatible(implementation)
        self.transact(wrapped_instance.upgradeToAndCall, implementation.address, data)

        upgraded_implementation = self.get_implementation(proxy_address)
        if upgraded_implementation != implementation.address:
            raise UpgradeError(
                f"Proxy {proxy_address} points to {upgraded_implementation} after the upgrade; "
                f"expected {implementation.address}."
            )
        return wrapped_instance

    @staticmethod
    def _check_uups_compatible(implementation: ContractInstance) -> None:
        contract_name = implementation.contract_type.name
        if not has_method(implementation, "proxiableUUID"):
            raise UpgradeError(f"{contract_name} is not a UUPS implementation (no proxiableUUID).")
        if to_int(implementation.proxiableUUID()) != EIP1967_IMPLEMENTATION_SLOT:
            raise UpgradeError(
                f"{contract_name} at {implementation.address} reports an unsupported proxiableUUID."
            )

    def _print_deployment_info(self):
        print(
            f"Account: {self.get_account().address}",
            f"Config: {self.path}",
            f"Verify: {self.verify}",
            *describe_network(),
            f"Confirmations: {self.wait_policy.confirmations} "
            f"(timeout {self.wait_policy.timeout}s, {self.wait_policy.retries} retries)",
            sep="\n",
        )
