# core/domain/entities/step_result_entity.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.domain.enums.harvest_enums import PipelineStep, StepStatus, SwapRoute
from core.services.exceptions import error_details

DRY_RUN_REASON = "dry run"


class StepResult(BaseModel):
    """
    Outcome of one pipeline step (or one token inside a step).

    Steps never raise past the orchestrator; they return one of these and the
    summary is built from the accumulated list.
    """

    step: PipelineStep
    status: StepStatus
    token: Optional[str] = None
    reason: Optional[str] = None
    tx_hashes: List[str] = Field(default_factory=list)
    amounts: Dict[str, int] = Field(default_factory=dict)
    details: Dict[str, Any] = Field(default_factory=dict)
    retryable: bool = False

    model_config = ConfigDict(use_enum_values=False)

    @property
    def ok(self) -> bool:
        return self.status != StepStatus.FAILED

    @property
    def is_dry_run(self) -> bool:
        return self.status == StepStatus.SKIPPED and self.reason == DRY_RUN_REASON

    @classmethod
    def success(cls, step: PipelineStep, **kw: Any) -> "StepResult":
        return cls(step=step, status=StepStatus.SUCCESS, **kw)

    @classmethod
    def skipped(cls, step: PipelineStep, reason: str, **kw: Any) -> "StepResult":
        return cls(step=step, status=StepStatus.SKIPPED, reason=reason, **kw)

    @classmethod
    def failed(cls, step: PipelineStep, exc: BaseException, **kw: Any) -> "StepResult":
        info = error_details(exc)
        details = dict(kw.pop("details", {}) or {})
        details.update(info)
        tx_hashes = list(kw.pop("tx_hashes", []) or [])
        if info.get("tx_hash") and info["tx_hash"] not in tx_hashes:
            tx_hashes.append(info["tx_hash"])
        return cls(
            step=step,
            status=StepStatus.FAILED,
            reason=info["error_msg"],
            retryable=info["retryable"],
            details=details,
            tx_hashes=tx_hashes,
            **kw,
        )


class SwapOutcome(BaseModel):
    """Per-token swap into the settlement asset."""

    token: str
    amount_in: int
    route: SwapRoute = SwapRoute.NONE
    settlement_out: int = 0
    intermediate_out: int = 0
    result: StepResult


class PipelineResult(BaseModel):
    """
    Everything one run observed and did. Created per invocation, never stored.
    """

    dry_run: bool = False
    below_threshold: bool = False
    total_usd: float = 0.0
    prices_usd: Dict[str, float] = Field(default_factory=dict)

    claimed: Dict[str, int] = Field(default_factory=dict)
    collected: Dict[str, int] = Field(default_factory=dict)
    totals: Dict[str, int] = Field(default_factory=dict)

    compound_alloc: Dict[str, int] = Field(default_factory=dict)
    harvest_alloc: Dict[str, int] = Field(default_factory=dict)
    retained: Dict[str, int] = Field(default_factory=dict)

    compounded: Dict[str, int] = Field(default_factory=dict)
    liquidity_added: int = 0
    harvested_settlement: int = 0
    vault_address: Optional[str] = None

    steps: List[StepResult] = Field(default_factory=list)
    swaps: List[SwapOutcome] = Field(default_factory=list)

    def add(self, result: StepResult) -> StepResult:
        self.steps.append(result)
        return result

    def results_for(self, step: PipelineStep) -> List[StepResult]:
        return [r for r in self.steps if r.step == step]

    def step_ok(self, step: PipelineStep) -> Optional[bool]:
        """
        None when the step never ran, otherwise True unless any result failed.
        """
        rs = self.results_for(step)
        if not rs:
            return None
        return all(r.ok for r in rs)

    def step_flags(self) -> Dict[str, Optional[bool]]:
        return {s.value: self.step_ok(s) for s in PipelineStep}

    @property
    def success(self) -> bool:
        return all(r.ok for r in self.steps)

    def as_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["success"] = self.success
        data["step_flags"] = self.step_flags()
        return data
