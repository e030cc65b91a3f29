from __future__ import annotations

import logging
from typing import Optional

from web3 import Web3

from adapters.chain.base import ContractAdapter
from core.services.exceptions import ContractCallError

logger = logging.getLogger(__name__)

MAX_UINT256 = (1 << 256) - 1

ABI_ERC20 = [
    {"name": "decimals", "outputs": [{"type": "uint8"}], "inputs": [], "stateMutability": "view", "type": "function"},
    {"name": "symbol", "outputs": [{"type": "string"}], "inputs": [], "stateMutability": "view", "type": "function"},
    {"name": "balanceOf", "outputs": [{"type": "uint256"}], "inputs": [{"type": "address"}], "stateMutability": "view", "type": "function"},
    {"name": "allowance", "outputs": [{"type": "uint256"}], "inputs": [{"type": "address"}, {"type": "address"}], "stateMutability": "view", "type": "function"},
    {"name": "approve", "outputs": [{"type": "bool"}], "inputs": [{"type": "address"}, {"type": "uint256"}], "stateMutability": "nonpayable", "type": "function"},
    {"name": "transfer", "outputs": [{"type": "bool"}], "inputs": [{"type": "address"}, {"type": "uint256"}], "stateMutability": "nonpayable", "type": "function"},
]


class Erc20Adapter(ContractAdapter):
    ABI = ABI_ERC20

    # ---------- reads ----------
    def balance_of(self, owner: str) -> int:
        return int(self._call(self.contract.functions.balanceOf(Web3.to_checksum_address(owner))))

    def allowance(self, owner: str, spender: str) -> int:
        return int(
            self._call(
                self.contract.functions.allowance(
                    Web3.to_checksum_address(owner), Web3.to_checksum_address(spender)
                )
            )
        )

    def decimals(self) -> Optional[int]:
        """None when the token has no decimals(); RPC failures propagate."""
        try:
            return int(self._call(self.contract.functions.decimals()))
        except ContractCallError:
            return None

    def symbol(self) -> Optional[str]:
        try:
            return str(self._call(self.contract.functions.symbol()))
        except ContractCallError:
            return None

    # ---------- writes ----------
    def fn_approve(self, spender: str, amount: int = MAX_UINT256):
        return self.contract.functions.approve(Web3.to_checksum_address(spender), int(amount))

    def fn_transfer(self, to_addr: str, amount: int):
        return self.contract.functions.transfer(Web3.to_checksum_address(to_addr), int(amount))


class TokenRegistry:
    """
    Caches Erc20Adapter instances and their metadata per address for one run.
    """

    def __init__(self, w3: Web3):
        self.w3 = w3
        self._tokens: dict[str, Erc20Adapter] = {}
        self._meta: dict[str, tuple[str, int]] = {}

    def get(self, address: str) -> Erc20Adapter:
        key = Web3.to_checksum_address(address)
        if key not in self._tokens:
            self._tokens[key] = Erc20Adapter(self.w3, key)
        return self._tokens[key]

    def meta(self, address: str) -> tuple[str, int]:
        """
        (symbol, decimals) for `address`.

        Transient RPC errors are raised, never replaced by a default. A token
        without decimals() is assumed to have 18, and that guess is not cached.
        """
        key = Web3.to_checksum_address(address)
        if key in self._meta:
            return self._meta[key]
        t = self.get(key)
        symbol = t.symbol() or key[:10]
        decimals = t.decimals()
        if decimals is None:
            logger.warning("%s has no readable decimals(), assuming 18", key)
            return symbol, 18
        self._meta[key] = (symbol, decimals)
        return self._meta[key]
