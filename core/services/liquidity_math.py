"""
Concentrated-liquidity math (Uniswap v3/v4 compatible).

Pure integer functions working on Q64.96 square-root prices:

- tick <-> sqrtPriceX96 conversion (exact TickMath port, base 1.0001 per tick)
- liquidity obtainable from token amounts for a given range
- token amounts backing a given liquidity
- fees owed from fee growth accumulators

No I/O here; callers read slot0 / position bounds and pass plain ints.
"""

from __future__ import annotations

from decimal import Decimal, localcontext
from typing import Tuple

Q96 = 1 << 96
MIN_TICK = -887272
MAX_TICK = 887272
MIN_SQRT_RATIO = 4295128739
MAX_SQRT_RATIO = 1461446703485210103287273052203988822378723970342

_MAX_UINT256 = (1 << 256) - 1

# (bit, multiplier) pairs from TickMath.getSqrtRatioAtTick, Q128 values of 1/sqrt(1.0001)^bit
_TICK_BITS = (
    (0x2, 0xFFF97272373D413259A46990580E213A),
    (0x4, 0xFFF2E50F5F656932EF12357CF3C7FDCC),
    (0x8, 0xFFE5CACA7E10E4E61C3624EAA0941CD0),
    (0x10, 0xFFCB9843D60F6159C9DB58835C926644),
    (0x20, 0xFF973B41FA98C081472E6896DFB254C0),
    (0x40, 0xFF2EA16466C96A3843EC78B326B52861),
    (0x80, 0xFE5DEE046A99A2A811C461F1969C3053),
    (0x100, 0xFCBE86C7900A88AEDCFFC83B479AA3A4),
    (0x200, 0xF987A7253AC413176F2B074CF7815E54),
    (0x400, 0xF3392B0822B70005940C7A398E4B70F3),
    (0x800, 0xE7159475A2C29B7443B29C7FA6E889D9),
    (0x1000, 0xD097F3BDFD2022B8845AD8F792AA5825),
    (0x2000, 0xA9F746462D870FDF8A65DC1F90E061E5),
    (0x4000, 0x70D869A156D2A1B890BB3DF62BAF32F7),
    (0x8000, 0x31BE135F97D08FD981231505542FCFA6),
    (0x10000, 0x9AA508B5B7A84E1C677DE54F3E99BC9),
    (0x20000, 0x5D6AF8DEDB81196699C329225EE604),
    (0x40000, 0x2216E584F5FA1EA926041BEDFE98),
    (0x80000, 0x48A170391F7DC42444E8FA2),
)


def get_sqrt_ratio_at_tick(tick: int) -> int:
    """
    Return sqrt(1.0001^tick) * 2^96, rounded up, exactly like TickMath.

    Raises:
        ValueError: If tick is outside [MIN_TICK, MAX_TICK].
    """
    tick = int(tick)
    if tick < MIN_TICK or tick > MAX_TICK:
        raise ValueError(f"tick {tick} out of bounds [{MIN_TICK}, {MAX_TICK}]")

    abs_tick = abs(tick)
    ratio = 0xFFFCB933BD6FAD37AA2D162D1A594001 if abs_tick & 0x1 else 1 << 128
    for bit, mul in _TICK_BITS:
        if abs_tick & bit:
            ratio = (ratio * mul) >> 128

    if tick > 0:
        ratio = _MAX_UINT256 // ratio

    # Q128.128 -> Q64.96, rounding up
    return (ratio >> 32) + (0 if ratio % (1 << 32) == 0 else 1)


def get_tick_at_sqrt_ratio(sqrt_price_x96: int) -> int:
    """
    Return the greatest tick whose sqrt ratio is <= sqrt_price_x96.

    Raises:
        ValueError: If the price is outside [MIN_SQRT_RATIO, MAX_SQRT_RATIO).
    """
    sqrt_price_x96 = int(sqrt_price_x96)
    if sqrt_price_x96 < MIN_SQRT_RATIO or sqrt_price_x96 >= MAX_SQRT_RATIO:
        raise ValueError(f"sqrt_price_x96 {sqrt_price_x96} out of bounds")

    # Float estimate, then fix up against the exact integer curve.
    with localcontext() as ctx:
        ctx.prec = 80
        ratio = (Decimal(sqrt_price_x96) / Decimal(Q96)) ** 2
        estimate = int((ratio.ln() / Decimal("1.0001").ln()).to_integral_value(rounding="ROUND_FLOOR"))
    tick = max(MIN_TICK, min(MAX_TICK, estimate))

    while tick > MIN_TICK and get_sqrt_ratio_at_tick(tick) > sqrt_price_x96:
        tick -= 1
    while tick < MAX_TICK and get_sqrt_ratio_at_tick(tick + 1) <= sqrt_price_x96:
        tick += 1
    return tick


def _ordered(sqrt_a: int, sqrt_b: int) -> Tuple[int, int]:
    a, b = int(sqrt_a), int(sqrt_b)
    return (b, a) if a > b else (a, b)


def get_liquidity_for_amount0(sqrt_a: int, sqrt_b: int, amount0: int) -> int:
    """L = amount0 * (sqrtA * sqrtB / Q96) / (sqrtB - sqrtA)"""
    sqrt_a, sqrt_b = _ordered(sqrt_a, sqrt_b)
    if sqrt_b == sqrt_a or amount0 <= 0:
        return 0
    intermediate = (sqrt_a * sqrt_b) // Q96
    return (int(amount0) * intermediate) // (sqrt_b - sqrt_a)


def get_liquidity_for_amount1(sqrt_a: int, sqrt_b: int, amount1: int) -> int:
    """L = amount1 * Q96 / (sqrtB - sqrtA)"""
    sqrt_a, sqrt_b = _ordered(sqrt_a, sqrt_b)
    if sqrt_b == sqrt_a or amount1 <= 0:
        return 0
    return (int(amount1) * Q96) // (sqrt_b - sqrt_a)


def get_liquidity_for_amounts(
    sqrt_price_x96: int,
    sqrt_a: int,
    sqrt_b: int,
    amount0: int,
    amount1: int,
) -> int:
    """
    Maximum liquidity mintable from (amount0, amount1) in range [sqrtA, sqrtB].

    - price <= lower: only token0 counts (range is entirely token0)
    - price >= upper: only token1 counts (range is entirely token1)
    - in range: the binding side, min(L0 on [P, B], L1 on [A, P])

    Degenerate input (empty range, zero amounts) yields 0, never an exception.
    """
    sqrt_a, sqrt_b = _ordered(sqrt_a, sqrt_b)
    sqrt_p = int(sqrt_price_x96)

    if sqrt_p <= sqrt_a:
        return get_liquidity_for_amount0(sqrt_a, sqrt_b, amount0)
    if sqrt_p < sqrt_b:
        liq0 = get_liquidity_for_amount0(sqrt_p, sqrt_b, amount0)
        liq1 = get_liquidity_for_amount1(sqrt_a, sqrt_p, amount1)
        return min(liq0, liq1)
    return get_liquidity_for_amount1(sqrt_a, sqrt_b, amount1)


def get_amount0_for_liquidity(sqrt_a: int, sqrt_b: int, liquidity: int) -> int:
    sqrt_a, sqrt_b = _ordered(sqrt_a, sqrt_b)
    if sqrt_a == 0:
        return 0
    return ((int(liquidity) << 96) * (sqrt_b - sqrt_a) // sqrt_b) // sqrt_a


def get_amount1_for_liquidity(sqrt_a: int, sqrt_b: int, liquidity: int) -> int:
    sqrt_a, sqrt_b = _ordered(sqrt_a, sqrt_b)
    return (int(liquidity) * (sqrt_b - sqrt_a)) // Q96


def get_amounts_for_liquidity(
    sqrt_price_x96: int,
    sqrt_a: int,
    sqrt_b: int,
    liquidity: int,
) -> Tuple[int, int]:
    """Token amounts (rounded down) backing `liquidity` at the current price."""
    sqrt_a, sqrt_b = _ordered(sqrt_a, sqrt_b)
    sqrt_p = int(sqrt_price_x96)

    if sqrt_p <= sqrt_a:
        return get_amount0_for_liquidity(sqrt_a, sqrt_b, liquidity), 0
    if sqrt_p < sqrt_b:
        return (
            get_amount0_for_liquidity(sqrt_p, sqrt_b, liquidity),
            get_amount1_for_liquidity(sqrt_a, sqrt_p, liquidity),
        )
    return 0, get_amount1_for_liquidity(sqrt_a, sqrt_b, liquidity)


def sqrt_price_x96_to_price(sqrt_price_x96: int, dec0: int, dec1: int) -> float:
    """
    Human price of token0 expressed in token1 (e.g. USDC per WETH).
    """
    ratio = Decimal(int(sqrt_price_x96)) / Decimal(Q96)
    scale = Decimal(10) ** (int(dec0) - int(dec1))
    return float(ratio * ratio * scale)


Q128 = 1 << 128
_U256 = 1 << 256


def get_fees_owed(fee_growth_inside_x128: int, fee_growth_inside_last_x128: int, liquidity: int) -> int:
    """
    Uncollected fees of one currency: (growthInside - growthInsideLast) * L / 2^128.

    Growth accumulators wrap at 2^256, so the difference is taken modulo 2^256.
    """
    delta = (int(fee_growth_inside_x128) - int(fee_growth_inside_last_x128)) % _U256
    return (delta * int(liquidity)) // Q128
