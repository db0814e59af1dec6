import time
from collections import OrderedDict
from typing import Callable, NamedTuple

import click
from ape.exceptions import ProviderError
from ape.utils import ZERO_ADDRESS
from requests.exceptions import RequestException

from deployment.constants import (
    DEFAULT_CONFIRMATION_RETRIES,
    DEFAULT_CONFIRMATION_TIMEOUT,
    DEFAULT_CONFIRMATIONS,
    DEFAULT_POLL_INTERVAL,
)

# errors raised by a flaky or unreachable RPC endpoint while polling
TRANSPORT_ERRORS = (ConnectionError, TimeoutError, RequestException, ProviderError)


def _abort() -> None:
    print("Aborting deployment!")
    raise click.Abort()


def _confirm_deployment(contract_name: str) -> None:
    """Asks the user to confirm the deployment of a single contract."""
    answer = input(f"Deploy {contract_name} Y/N? ")
    if answer.lower().strip() == "n":
        _abort()


def _continue() -> None:
    """Asks the user to continue."""
    answer = input("Continue Y/N? ")
    if answer.lower().strip() == "n":
        _abort()


def _confirm_zero_address() -> None:
    answer = input("Zero Address detected for deployment parameter; Continue? Y/N? ")
    if answer.lower().strip() == "n":
        _abort()


def _confirm_resolution(resolved_params: OrderedDict, contract_name: str) -> None:
    """Asks the user to confirm the resolved constructor parameters for a single contract."""
    if len(resolved_params) == 0:
        print(f"\n(i) No constructor parameters for {contract_name}")
        _confirm_deployment(contract_name)
        return

    print(f"\nConstructor parameters for {contract_name}")
    contains_zero_address = False
    for name, resolved_value in resolved_params.items():
        print(f"\t{name}={resolved_value}")
        if not contains_zero_address:
            contains_zero_address = resolved_value == ZERO_ADDRESS
    _confirm_deployment(contract_name)
    if contains_zero_address:
        _confirm_zero_address()


class WaitPolicy(NamedTuple):
    """Bounds the wait for a transaction to be confirmed."""

    confirmations: int = DEFAULT_CONFIRMATIONS
    timeout: float = DEFAULT_CONFIRMATION_TIMEOUT
    retries: int = DEFAULT_CONFIRMATION_RETRIES
    poll_interval: float = DEFAULT_POLL_INTERVAL

    @property
    def attempts(self) -> int:
        return self.retries + 1


class ConfirmationTimeout(Exception):
    """Raised when a transaction is not confirmed within the wait policy."""


def _wait_once(
    target_height: int,
    policy: WaitPolicy,
    get_height: Callable[[], int],
    sleep: Callable[[float], None],
) -> bool:
    """Polls the chain height until the target is reached or the attempt times out."""
    deadline = time.monotonic() + policy.timeout
    while True:
        if get_height() >= target_height:
            return True
        if time.monotonic() >= deadline:
            return False
        sleep(policy.poll_interval)


def await_confirmation(
    receipt,
    policy: WaitPolicy,
    get_height: Callable[[], int],
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """
    Blocks until `receipt` has `policy.confirmations` confirmations.

    Each attempt is bounded by `policy.timeout`; transport errors end the attempt early.
    Nothing is ever resubmitted. Interrupting the wait leaves the transaction in flight.
    """
    txn_hash = receipt.txn_hash
    target_height = receipt.block_number + policy.confirmations - 1
    print(f"(i) Waiting for {policy.confirmations} confirmation(s) of {txn_hash}...")

    last_error = None
    try:
        for attempt in range(1, policy.attempts + 1):
            try:
                if _wait_once(target_height, policy, get_height, sleep):
                    return
                last_error = None
                print(f"(!) Attempt {attempt}/{policy.attempts} timed out after {policy.timeout}s")
            except TRANSPORT_ERRORS as e:
                last_error = e
                print(f"(!) Attempt {attempt}/{policy.attempts} failed: {e}")
            if attempt < policy.attempts:
                sleep(policy.poll_interval)
    except KeyboardInterrupt:
        print(f"\nStopped waiting; transaction {txn_hash} was already submitted.")
        raise

    message = (
        f"Transaction {txn_hash} was not confirmed after {policy.attempts} attempt(s) "
        f"of {policy.timeout}s each."
    )
    raise ConfirmationTimeout(message) from last_error
