from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.domain.schemas.harvest_types import HarvestConfig


class HarvestRunRequest(BaseModel):
    """
    Request payload for the harvest endpoints.

    Same keys as the cron JSON config (camelCase), snake_case accepted too.
    """

    token: str = Field(..., description="Target token whose protocol fees are claimed.")
    token_id: Optional[int] = Field(None, alias="tokenId", ge=0, description="v4 position NFT id.")
    harvest_address: Optional[str] = Field(None, alias="harvestAddress", description="Vault receiving USDC.")

    compound_pct: int = Field(100, alias="compoundPct", ge=0, le=100, description="0..100, rest is harvested.")
    min_usd: float = Field(0.0, alias="minUsd", ge=0, description="0 = always act.")
    slippage: float = Field(1.0, ge=0, le=50, description="Percent, used for min-out and compound max amounts.")
    fee_contract: Optional[str] = Field(None, alias="feeContract", description="Fee escrow override.")

    skip_claim: bool = Field(False, alias="skipClaim")
    skip_lp: bool = Field(False, alias="skipLp")
    dry_run: bool = Field(False, alias="dryRun")

    model_config = ConfigDict(populate_by_name=True)

    def to_config(self) -> HarvestConfig:
        return HarvestConfig.from_mapping(self.model_dump(by_alias=True))


class HarvestRunResponse(BaseModel):
    success: bool
    dry_run: bool
    below_threshold: bool
    total_usd: float
    step_flags: Dict[str, Optional[bool]]
    result: Dict[str, Any]

    @classmethod
    def from_result(cls, data: Dict[str, Any]) -> "HarvestRunResponse":
        return cls(
            success=bool(data.get("success")),
            dry_run=bool(data.get("dry_run")),
            below_threshold=bool(data.get("below_threshold")),
            total_usd=float(data.get("total_usd") or 0.0),
            step_flags=data.get("step_flags") or {},
            result=data,
        )


class BurnPositionRequest(BaseModel):
    dry_run: bool = Field(False, alias="dryRun", description="Only encode the unlock data, send nothing.")

    model_config = ConfigDict(populate_by_name=True)
