from __future__ import annotations

import logging

from adapters.chain.v4_actions import decrease_liquidity, encode_unlock_data, take_pair
from core.domain.entities.step_result_entity import DRY_RUN_REASON, StepResult
from core.domain.enums.harvest_enums import PipelineStep
from core.domain.schemas.harvest_types import Position
from core.services.approval_service import ApprovalService
from core.services.balance_meter import BalanceMeter, received
from core.services.exceptions import ChainError
from core.services.utils import deadline_from_now

logger = logging.getLogger(__name__)


class PositionCollector:
    """
    Collects accrued LP fees from a v4 position.

    A zero-liquidity DECREASE_LIQUIDITY pays out fees only; TAKE_PAIR sends
    both currencies to the wallet.
    """

    def __init__(
        self,
        *,
        position_manager,
        approvals: ApprovalService,
        meter: BalanceMeter,
        txs,
        state_view=None,
        deadline_sec: int = 300,
    ):
        self.position_manager = position_manager
        self.state_view = state_view
        self.approvals = approvals
        self.meter = meter
        self.txs = txs
        self.deadline_sec = int(deadline_sec)

    def preview(self, position: Position) -> dict[str, int]:
        """Uncollected fees from pool state; zeros when no state view is wired or the read fails."""
        c0, c1 = position.pool_key.currencies
        if self.state_view is None:
            return {c0: 0, c1: 0}
        try:
            f0, f1 = self.state_view.uncollected_fees(position, self.position_manager.address)
        except ChainError as exc:
            logger.warning("Fee preview for #%d failed: %s", position.position_id, exc)
            return {c0: 0, c1: 0}
        return {c0: f0, c1: f1}

    def collect(self, position: Position, *, dry_run: bool = False) -> StepResult:
        c0, c1 = position.pool_key.currencies

        if position.liquidity == 0:
            return StepResult.skipped(PipelineStep.COLLECT, "nothing to collect", amounts={c0: 0, c1: 0})

        if dry_run:
            return StepResult.skipped(PipelineStep.COLLECT, DRY_RUN_REASON, amounts=self.preview(position))

        wallet = self.txs.sender_address()
        hashes: list[str] = []
        try:
            for c in (c0, c1):
                hashes += self.approvals.ensure_erc20_to_permit2(c)

            unlock = encode_unlock_data(
                [
                    decrease_liquidity(position.position_id, 0, 0, 0),
                    take_pair(c0, c1, wallet),
                ]
            )
            fn = self.position_manager.fn_modify_liquidities(unlock, deadline_from_now(self.deadline_sec))
            out, snaps = self.meter.measure([c0, c1], lambda: self.txs.send(fn, wait=True))
            hashes.append(out["tx_hash"])
        except ChainError as exc:
            logger.error("Collect on position #%d failed: %s", position.position_id, exc)
            return StepResult.failed(PipelineStep.COLLECT, exc, tx_hashes=hashes)

        amounts = received(snaps)
        logger.info("Collected LP fees from #%d: %s", position.position_id, amounts)
        return StepResult.success(PipelineStep.COLLECT, tx_hashes=hashes, amounts=amounts)
