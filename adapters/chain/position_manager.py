from __future__ import annotations

from typing import Tuple

from web3 import Web3

from adapters.chain.base import ContractAdapter
from adapters.chain.v4_actions import decode_position_info
from core.domain.schemas.harvest_types import PoolKey, Position

_POOL_KEY_COMPONENTS = [
    {"name": "currency0", "type": "address"},
    {"name": "currency1", "type": "address"},
    {"name": "fee", "type": "uint24"},
    {"name": "tickSpacing", "type": "int24"},
    {"name": "hooks", "type": "address"},
]

ABI_POSITION_MANAGER = [
    {
        "name": "ownerOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "name": "getPoolAndPositionInfo",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "outputs": [
            {"name": "poolKey", "type": "tuple", "components": _POOL_KEY_COMPONENTS},
            {"name": "info", "type": "uint256"},
        ],
    },
    {
        "name": "getPositionLiquidity",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "outputs": [{"name": "liquidity", "type": "uint128"}],
    },
    {
        "name": "modifyLiquidities",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {"name": "unlockData", "type": "bytes"},
            {"name": "deadline", "type": "uint256"},
        ],
        "outputs": [],
    },
]


class PositionManagerAdapter(ContractAdapter):
    """Uniswap v4 PositionManager (ERC-721 positions)."""

    ABI = ABI_POSITION_MANAGER

    # ---------- reads ----------
    def owner_of(self, token_id: int) -> str:
        return Web3.to_checksum_address(self._call(self.contract.functions.ownerOf(int(token_id))))

    def get_pool_and_position_info(self, token_id: int) -> Tuple[PoolKey, int]:
        raw_key, info = self._call(self.contract.functions.getPoolAndPositionInfo(int(token_id)))
        return PoolKey.from_tuple(raw_key), int(info)

    def get_position_liquidity(self, token_id: int) -> int:
        return int(self._call(self.contract.functions.getPositionLiquidity(int(token_id))))

    def read_position(self, token_id: int) -> Position:
        pool_key, info = self.get_pool_and_position_info(token_id)
        tick_lower, tick_upper = decode_position_info(info)
        return Position(
            position_id=int(token_id),
            pool_key=pool_key,
            tick_lower=tick_lower,
            tick_upper=tick_upper,
            liquidity=self.get_position_liquidity(token_id),
        )

    # ---------- writes ----------
    def fn_modify_liquidities(self, unlock_data: bytes, deadline: int):
        return self.contract.functions.modifyLiquidities(unlock_data, int(deadline))
