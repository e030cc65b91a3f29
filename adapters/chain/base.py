from __future__ import annotations

from typing import Any

from web3 import Web3
from web3.contract import Contract
from web3.contract.contract import ContractFunction

from core.services.retry import call_with_retry


class ContractAdapter:
    """
    Thin base for web3 contract wrappers.

    Reads go through `_call`, which retries transient RPC failures; writes are
    exposed as `fn_*` methods returning ContractFunctions for TxService.send.
    """

    ABI: list = []

    def __init__(self, w3: Web3, address: str):
        self.w3 = w3
        self.address = Web3.to_checksum_address(address)
        self.contract: Contract = w3.eth.contract(address=self.address, abi=self.ABI)

    def _call(self, fn: ContractFunction, label: str | None = None) -> Any:
        return call_with_retry(fn.call, label=label or f"{self.__class__.__name__}.{fn.fn_name}")
