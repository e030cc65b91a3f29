from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, Optional

from web3 import Web3

from adapters.chain.base import ContractAdapter
from core.domain.entities.step_result_entity import StepResult
from core.domain.enums.harvest_enums import PipelineStep
from core.services.balance_meter import BalanceMeter
from core.services.exceptions import ChainError
from core.services.normalize import dedupe_addresses

logger = logging.getLogger(__name__)

ABI_FEE_ESCROW = [
    {
        "name": "availableFees",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "feeOwner", "type": "address"},
            {"name": "token", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "claim",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "feeOwner", "type": "address"},
            {"name": "token", "type": "address"},
        ],
        "outputs": [],
    },
]


class FeeSourceAdapter(ContractAdapter):
    """
    Protocol fee escrow (Clanker fee storage): fees accrue per (owner, token)
    and are pushed to the owner on claim.
    """

    ABI = ABI_FEE_ESCROW

    # ---------- reads ----------
    def available_fees(self, owner: str, token: str) -> int:
        return int(
            self._call(
                self.contract.functions.availableFees(
                    Web3.to_checksum_address(owner), Web3.to_checksum_address(token)
                )
            )
        )

    def check_available(self, owner: str, tokens: Iterable[str]) -> Dict[str, int]:
        """Availability for every token, read concurrently."""
        toks = dedupe_addresses(tokens)
        if not toks:
            return {}
        with ThreadPoolExecutor(max_workers=len(toks)) as pool:
            amounts = list(pool.map(lambda t: self.available_fees(owner, t), toks))
        return dict(zip(toks, amounts))

    # ---------- writes ----------
    def fn_claim(self, owner: str, token: str):
        return self.contract.functions.claim(Web3.to_checksum_address(owner), Web3.to_checksum_address(token))

    def claim(
        self,
        owner: str,
        token: str,
        *,
        txs,
        meter: BalanceMeter,
        expected: Optional[int] = None,
    ) -> StepResult:
        """
        Claims `token` fees for `owner` and reports the measured wallet delta.

        `expected` is the availability preview; when omitted it is read here.
        Zero available never sends a tx.
        """
        token = Web3.to_checksum_address(token)
        try:
            available = self.available_fees(owner, token) if expected is None else int(expected)
            if available <= 0:
                return StepResult.skipped(PipelineStep.CLAIM, "nothing available", token=token, amounts={token: 0})

            out, snaps = meter.measure([token], lambda: txs.send(self.fn_claim(owner, token), wait=True))
        except ChainError as exc:
            logger.error("Claim %s failed: %s", token, exc)
            return StepResult.failed(PipelineStep.CLAIM, exc, token=token)

        got = snaps[token].received
        if got != available:
            # something else moved the token during the claim, or the escrow paid a different amount
            logger.warning(
                "Claim %s: measured %d but %d was available; balance delta may include unrelated transfers",
                token, got, available,
            )

        logger.info("Claimed %d of %s (tx %s)", got, token, out["tx_hash"])
        return StepResult.success(
            PipelineStep.CLAIM,
            token=token,
            tx_hashes=[out["tx_hash"]],
            amounts={token: got},
            details={"available": available, "mismatch": got != available},
        )
