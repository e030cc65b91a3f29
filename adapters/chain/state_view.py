from __future__ import annotations

from typing import Tuple

from web3 import Web3

from adapters.chain.base import ContractAdapter
from adapters.chain.v4_actions import pool_id
from core.domain.schemas.harvest_types import PoolKey, Position
from core.services.liquidity_math import get_fees_owed

ABI_STATE_VIEW = [
    {
        "name": "getSlot0",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "poolId", "type": "bytes32"}],
        "outputs": [
            {"name": "sqrtPriceX96", "type": "uint160"},
            {"name": "tick", "type": "int24"},
            {"name": "protocolFee", "type": "uint24"},
            {"name": "lpFee", "type": "uint24"},
        ],
    },
    {
        "name": "getFeeGrowthInside",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "poolId", "type": "bytes32"},
            {"name": "tickLower", "type": "int24"},
            {"name": "tickUpper", "type": "int24"},
        ],
        "outputs": [
            {"name": "feeGrowthInside0X128", "type": "uint256"},
            {"name": "feeGrowthInside1X128", "type": "uint256"},
        ],
    },
    {
        "name": "getPositionInfo",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "poolId", "type": "bytes32"},
            {"name": "owner", "type": "address"},
            {"name": "tickLower", "type": "int24"},
            {"name": "tickUpper", "type": "int24"},
            {"name": "salt", "type": "bytes32"},
        ],
        "outputs": [
            {"name": "liquidity", "type": "uint128"},
            {"name": "feeGrowthInside0LastX128", "type": "uint256"},
            {"name": "feeGrowthInside1LastX128", "type": "uint256"},
        ],
    },
]


class StateViewAdapter(ContractAdapter):
    """Read-only v4 pool state (StateView lens over PoolManager storage)."""

    ABI = ABI_STATE_VIEW

    def get_slot0(self, pid: bytes) -> Tuple[int, int, int, int]:
        sqrt_p, tick, protocol_fee, lp_fee = self._call(self.contract.functions.getSlot0(pid))
        return int(sqrt_p), int(tick), int(protocol_fee), int(lp_fee)

    def slot0_for(self, pool_key: PoolKey) -> Tuple[int, int]:
        """(sqrtPriceX96, tick) for the pool identified by `pool_key`."""
        sqrt_p, tick, _, _ = self.get_slot0(pool_id(pool_key))
        return sqrt_p, tick

    def get_fee_growth_inside(self, pid: bytes, tick_lower: int, tick_upper: int) -> Tuple[int, int]:
        g0, g1 = self._call(self.contract.functions.getFeeGrowthInside(pid, int(tick_lower), int(tick_upper)))
        return int(g0), int(g1)

    def get_position_info(self, pid: bytes, owner: str, tick_lower: int, tick_upper: int, salt: bytes) -> Tuple[int, int, int]:
        liq, last0, last1 = self._call(
            self.contract.functions.getPositionInfo(
                pid, Web3.to_checksum_address(owner), int(tick_lower), int(tick_upper), salt
            )
        )
        return int(liq), int(last0), int(last1)

    def uncollected_fees(self, position: Position, position_manager: str) -> Tuple[int, int]:
        """
        Fees a zero-liquidity decrease would pay out right now.

        PositionManager owns every pool position and salts it with the token id.
        """
        pid = pool_id(position.pool_key)
        salt = int(position.position_id).to_bytes(32, "big")
        liq, last0, last1 = self.get_position_info(pid, position_manager, position.tick_lower, position.tick_upper, salt)
        g0, g1 = self.get_fee_growth_inside(pid, position.tick_lower, position.tick_upper)
        return get_fees_owed(g0, last0, liq), get_fees_owed(g1, last1, liq)
