from __future__ import annotations

import logging

from core.domain.entities.step_result_entity import DRY_RUN_REASON, StepResult
from core.domain.enums.harvest_enums import PipelineStep
from core.services.balance_meter import BalanceMeter
from core.services.exceptions import ChainError

logger = logging.getLogger(__name__)


class VaultTransfer:
    """Sends the settlement asset gained in this run to the vault address."""

    def __init__(self, *, tokens, meter: BalanceMeter, txs, settlement: str):
        self.tokens = tokens
        self.meter = meter
        self.txs = txs
        self.settlement = settlement

    def transfer(self, vault: str, amount: int, *, dry_run: bool = False) -> StepResult:
        amount = int(amount)
        if amount <= 0:
            return StepResult.skipped(PipelineStep.TRANSFER, "no settlement asset gained")

        if dry_run:
            return StepResult.skipped(PipelineStep.TRANSFER, DRY_RUN_REASON, amounts={self.settlement: amount})

        erc = self.tokens.get(self.settlement)
        try:
            out, snaps = self.meter.measure(
                [self.settlement], lambda: self.txs.send(erc.fn_transfer(vault, amount), wait=True)
            )
        except ChainError as exc:
            logger.error("Transfer of %d to vault %s failed, funds stay in wallet: %s", amount, vault, exc)
            return StepResult.failed(PipelineStep.TRANSFER, exc, amounts={self.settlement: amount})

        sent = max(0, -snaps[self.settlement].delta)
        logger.info("Sent %d settlement to vault %s (tx %s)", sent, vault, out["tx_hash"])
        return StepResult.success(
            PipelineStep.TRANSFER,
            tx_hashes=[out["tx_hash"]],
            amounts={self.settlement: sent},
            details={"vault": vault},
        )
