from __future__ import annotations

from typing import Tuple

from web3 import Web3

from adapters.chain.base import ContractAdapter
from adapters.chain.v4_actions import U48_MAX, U160_MAX

ABI_PERMIT2 = [
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "user", "type": "address"},
            {"name": "token", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [
            {"name": "amount", "type": "uint160"},
            {"name": "expiration", "type": "uint48"},
            {"name": "nonce", "type": "uint48"},
        ],
    },
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "token", "type": "address"},
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint160"},
            {"name": "expiration", "type": "uint48"},
        ],
        "outputs": [],
    },
]


class Permit2Adapter(ContractAdapter):
    """
    Permit2 AllowanceTransfer. v4 PositionManager and UniversalRouter pull
    tokens through it, so every spend needs ERC20 -> Permit2 and
    Permit2 -> spender approvals.
    """

    ABI = ABI_PERMIT2

    def allowance(self, owner: str, token: str, spender: str) -> Tuple[int, int, int]:
        amount, expiration, nonce = self._call(
            self.contract.functions.allowance(
                Web3.to_checksum_address(owner),
                Web3.to_checksum_address(token),
                Web3.to_checksum_address(spender),
            )
        )
        return int(amount), int(expiration), int(nonce)

    def fn_approve(self, token: str, spender: str, amount: int = U160_MAX, expiration: int = U48_MAX):
        return self.contract.functions.approve(
            Web3.to_checksum_address(token),
            Web3.to_checksum_address(spender),
            int(amount),
            int(expiration),
        )
