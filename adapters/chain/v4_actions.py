"""
Typed calldata builders for Uniswap v4 PositionManager / UniversalRouter.

Each builder returns opaque ABI-encoded bytes for exactly one action; callers
combine them with `encode_unlock_data`. Nothing outside this module touches
raw byte offsets.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple

from eth_abi import encode
from web3 import Web3

from core.domain.schemas.harvest_types import PoolKey


class Actions:
    """v4-periphery Actions.sol codes used here."""

    INCREASE_LIQUIDITY = 0x00
    DECREASE_LIQUIDITY = 0x01
    BURN_POSITION = 0x03
    SWAP_EXACT_IN_SINGLE = 0x06
    SETTLE_ALL = 0x0C
    SETTLE_PAIR = 0x0D
    TAKE_ALL = 0x0F
    TAKE_PAIR = 0x11


class Commands:
    """UniversalRouter command bytes."""

    V4_SWAP = 0x10


POOL_KEY_ABI = "(address,address,uint24,int24,address)"

U128_MAX = (1 << 128) - 1
U160_MAX = (1 << 160) - 1
U48_MAX = (1 << 48) - 1


@dataclass(frozen=True)
class Action:
    code: int
    params: bytes


# ---------- position manager actions ----------

def increase_liquidity(token_id: int, liquidity: int, amount0_max: int, amount1_max: int, hook_data: bytes = b"") -> Action:
    return Action(
        Actions.INCREASE_LIQUIDITY,
        encode(
            ["uint256", "uint256", "uint128", "uint128", "bytes"],
            [int(token_id), int(liquidity), min(int(amount0_max), U128_MAX), min(int(amount1_max), U128_MAX), hook_data],
        ),
    )


def decrease_liquidity(token_id: int, liquidity: int = 0, amount0_min: int = 0, amount1_min: int = 0, hook_data: bytes = b"") -> Action:
    """liquidity == 0 collects accrued fees without touching principal."""
    return Action(
        Actions.DECREASE_LIQUIDITY,
        encode(
            ["uint256", "uint256", "uint128", "uint128", "bytes"],
            [int(token_id), int(liquidity), int(amount0_min), int(amount1_min), hook_data],
        ),
    )


def burn_position(token_id: int, amount0_min: int = 0, amount1_min: int = 0, hook_data: bytes = b"") -> Action:
    return Action(
        Actions.BURN_POSITION,
        encode(["uint256", "uint128", "uint128", "bytes"], [int(token_id), int(amount0_min), int(amount1_min), hook_data]),
    )


def take_pair(currency0: str, currency1: str, recipient: str) -> Action:
    """Close both currency deltas by sending them to `recipient`."""
    return Action(
        Actions.TAKE_PAIR,
        encode(
            ["address", "address", "address"],
            [Web3.to_checksum_address(currency0), Web3.to_checksum_address(currency1), Web3.to_checksum_address(recipient)],
        ),
    )


def settle_pair(currency0: str, currency1: str) -> Action:
    """Pay both currency debts from the caller (through Permit2)."""
    return Action(
        Actions.SETTLE_PAIR,
        encode(["address", "address"], [Web3.to_checksum_address(currency0), Web3.to_checksum_address(currency1)]),
    )


# ---------- v4 router actions ----------

def swap_exact_in_single(pool_key: PoolKey, zero_for_one: bool, amount_in: int, amount_out_min: int, hook_data: bytes = b"") -> Action:
    return Action(
        Actions.SWAP_EXACT_IN_SINGLE,
        encode(
            [f"({POOL_KEY_ABI},bool,uint128,uint128,bytes)"],
            [(pool_key.as_tuple(), bool(zero_for_one), int(amount_in), int(amount_out_min), hook_data)],
        ),
    )


def settle_all(currency: str, max_amount: int) -> Action:
    return Action(Actions.SETTLE_ALL, encode(["address", "uint256"], [Web3.to_checksum_address(currency), int(max_amount)]))


def take_all(currency: str, min_amount: int) -> Action:
    return Action(Actions.TAKE_ALL, encode(["address", "uint256"], [Web3.to_checksum_address(currency), int(min_amount)]))


# ---------- envelopes ----------

def encode_unlock_data(actions: Sequence[Action]) -> bytes:
    """abi.encode(bytes actions, bytes[] params) as consumed by modifyLiquidities / V4_SWAP."""
    codes = bytes(a.code for a in actions)
    return encode(["bytes", "bytes[]"], [codes, [a.params for a in actions]])


def encode_v4_swap_input(actions: Sequence[Action]) -> Tuple[bytes, list[bytes]]:
    """(commands, inputs) for UniversalRouter.execute with a single V4_SWAP command."""
    return bytes([Commands.V4_SWAP]), [encode_unlock_data(actions)]


def encode_v3_path(tokens: Sequence[str], fees: Sequence[int]) -> bytes:
    """
    token(20) | fee(3) | token(20) [| fee(3) | token(20) ...]
    """
    if len(tokens) != len(fees) + 1 or len(fees) == 0:
        raise ValueError("path needs len(tokens) == len(fees) + 1 and at least one hop")
    out = bytes.fromhex(Web3.to_checksum_address(tokens[0])[2:])
    for fee, tok in zip(fees, tokens[1:]):
        out += int(fee).to_bytes(3, "big")
        out += bytes.fromhex(Web3.to_checksum_address(tok)[2:])
    return out


# ---------- ids / decoding ----------

def pool_id(pool_key: PoolKey) -> bytes:
    """keccak256(abi.encode(PoolKey))"""
    return bytes(Web3.keccak(encode([POOL_KEY_ABI], [pool_key.as_tuple()])))


def _int24(raw: int) -> int:
    raw &= 0xFFFFFF
    return raw - 0x1000000 if raw >= 0x800000 else raw


def decode_position_info(info: int) -> Tuple[int, int]:
    """
    PositionInfo packs (from LSB): hasSubscriber(8) | tickLower(24) | tickUpper(24) | poolId(200).

    Returns (tick_lower, tick_upper).
    """
    info = int(info)
    tick_lower = _int24(info >> 8)
    tick_upper = _int24(info >> 32)
    return min(tick_lower, tick_upper), max(tick_lower, tick_upper)
