from __future__ import annotations

import logging
from typing import Dict

from adapters.chain.v4_actions import U128_MAX, encode_unlock_data, increase_liquidity, settle_pair
from core.domain.entities.step_result_entity import DRY_RUN_REASON, StepResult
from core.domain.enums.harvest_enums import PipelineStep
from core.domain.schemas.harvest_types import Position
from core.services.approval_service import ApprovalService
from core.services.balance_meter import BalanceMeter, spent
from core.services.exceptions import ChainError
from core.services.liquidity_math import (
    get_amounts_for_liquidity,
    get_liquidity_for_amounts,
    get_sqrt_ratio_at_tick,
    sqrt_price_x96_to_price,
)
from core.services.utils import deadline_from_now

logger = logging.getLogger(__name__)


def slippage_bps(slippage_pct: float) -> int:
    return int(round(float(slippage_pct) * 100))


def buffered_max(amount: int, slippage_pct: float) -> int:
    """amount * (10000 + slippage_bps) / 10000, capped at uint128."""
    return min(int(amount) * (10_000 + slippage_bps(slippage_pct)) // 10_000, U128_MAX)


class CompoundExecutor:
    """
    Re-deposits fee amounts into the same v4 position.

    Liquidity is computed against slot0 read at execution time. SKIPPED or
    FAILED results mean nothing was consumed and the caller may harvest the
    allocation instead.
    """

    def __init__(self, *, position_manager, state_view, approvals: ApprovalService, meter: BalanceMeter, txs, deadline_sec: int = 300):
        self.position_manager = position_manager
        self.state_view = state_view
        self.approvals = approvals
        self.meter = meter
        self.txs = txs
        self.deadline_sec = int(deadline_sec)

    def compute_liquidity(self, position: Position, amount0: int, amount1: int) -> tuple[int, int]:
        """(liquidity, sqrtPriceX96) for the given amounts at the live pool price."""
        sqrt_p, _tick = self.state_view.slot0_for(position.pool_key)
        liq = get_liquidity_for_amounts(
            sqrt_p,
            get_sqrt_ratio_at_tick(position.tick_lower),
            get_sqrt_ratio_at_tick(position.tick_upper),
            int(amount0),
            int(amount1),
        )
        return liq, sqrt_p

    def compound(
        self,
        position: Position,
        amounts: Dict[str, int],
        *,
        slippage_pct: float,
        dry_run: bool = False,
    ) -> StepResult:
        c0, c1 = position.pool_key.currencies
        a0 = int(amounts.get(c0, 0))
        a1 = int(amounts.get(c1, 0))

        if a0 <= 0 and a1 <= 0:
            return StepResult.skipped(PipelineStep.COMPOUND, "nothing to compound")

        try:
            liquidity, sqrt_p = self.compute_liquidity(position, a0, a1)
            (_, dec0), (_, dec1) = self.meter.tokens.meta(c0), self.meter.tokens.meta(c1)
        except ChainError as exc:
            logger.error("Compound: pool state read failed: %s", exc)
            return StepResult.failed(PipelineStep.COMPOUND, exc)

        max0, max1 = buffered_max(a0, slippage_pct), buffered_max(a1, slippage_pct)
        expected0, expected1 = get_amounts_for_liquidity(
            sqrt_p,
            get_sqrt_ratio_at_tick(position.tick_lower),
            get_sqrt_ratio_at_tick(position.tick_upper),
            liquidity,
        )
        details = {
            "liquidity": liquidity,
            "sqrt_price_x96": sqrt_p,
            "price": sqrt_price_x96_to_price(sqrt_p, dec0, dec1),
            "expected_amount0": expected0,
            "expected_amount1": expected1,
            "amount0_max": max0,
            "amount1_max": max1,
        }

        if liquidity <= 0:
            logger.warning("Compound: computed liquidity is 0 for amounts %d/%d", a0, a1)
            return StepResult.skipped(PipelineStep.COMPOUND, "computed liquidity is zero", details=details)

        if dry_run:
            logger.info(
                "Compound (dry run): would add liquidity %d to #%d using ~%d/%d at price %.6g",
                liquidity, position.position_id, expected0, expected1, details["price"],
            )
            return StepResult.skipped(PipelineStep.COMPOUND, DRY_RUN_REASON, details=details)

        hashes: list[str] = []
        try:
            hashes += self.approvals.ensure_permit2(c0, self.position_manager.address, max0)
            hashes += self.approvals.ensure_permit2(c1, self.position_manager.address, max1)

            unlock = encode_unlock_data(
                [
                    increase_liquidity(position.position_id, liquidity, max0, max1),
                    settle_pair(c0, c1),
                ]
            )
            fn = self.position_manager.fn_modify_liquidities(unlock, deadline_from_now(self.deadline_sec))
            out, snaps = self.meter.measure([c0, c1], lambda: self.txs.send(fn, wait=True))
            hashes.append(out["tx_hash"])
        except ChainError as exc:
            logger.error("Compound into #%d failed: %s", position.position_id, exc)
            return StepResult.failed(PipelineStep.COMPOUND, exc, tx_hashes=hashes, details=details)

        consumed = spent(snaps)
        logger.info("Compounded into #%d: liquidity +%d, consumed %s", position.position_id, liquidity, consumed)
        return StepResult.success(PipelineStep.COMPOUND, tx_hashes=hashes, amounts=consumed, details=details)
