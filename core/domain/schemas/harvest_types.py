from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from web3 import Web3

from core.services.normalize import ZERO_ADDRESS, to_checksum, same_address


def _checksum_or_none(v: Any, field_name: str) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    if not s:
        return None
    if not Web3.is_address(s):
        raise ValueError(f"{field_name} is not a valid address: {s}")
    return Web3.to_checksum_address(s)


class HarvestConfig(BaseModel):
    """
    Run configuration for one harvest/compound pipeline invocation.

    Built once (from JSON, CLI flags or an HTTP body) and passed read-only
    through every component. JSON keys follow the camelCase names used by
    cron config files; snake_case field names are accepted as well.
    """

    token: str = Field(..., description="Target token whose protocol fees are claimed.")
    position_id: Optional[int] = Field(None, alias="tokenId", ge=0, description="v4 position NFT id.")
    vault_address: Optional[str] = Field(None, alias="harvestAddress", description="Where harvested USDC goes.")

    compound_pct: int = Field(100, alias="compoundPct", ge=0, le=100)
    min_usd: float = Field(0.0, alias="minUsd", ge=0)
    slippage_pct: float = Field(1.0, alias="slippage", ge=0, le=50)
    fee_escrow: Optional[str] = Field(None, alias="feeContract", description="Fee-escrow override.")

    skip_claim: bool = Field(False, alias="skipClaim")
    skip_collect: bool = Field(False, alias="skipLp")
    dry_run: bool = Field(False, alias="dryRun")

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    @field_validator("token", mode="before")
    @classmethod
    def _token_address(cls, v: Any) -> str:
        out = _checksum_or_none(v, "token")
        if not out:
            raise ValueError("token is required")
        return out

    @field_validator("vault_address", "fee_escrow", mode="before")
    @classmethod
    def _optional_address(cls, v: Any, info) -> Optional[str]:
        return _checksum_or_none(v, info.field_name)

    @field_validator("position_id", mode="before")
    @classmethod
    def _position_id(cls, v: Any) -> Optional[int]:
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return int(v)

    @model_validator(mode="after")
    def _vault_not_zero(self) -> "HarvestConfig":
        if self.vault_address and same_address(self.vault_address, ZERO_ADDRESS):
            raise ValueError("harvestAddress must not be the zero address")
        return self

    # ---------- derived ----------

    @property
    def harvest_pct(self) -> int:
        return 100 - int(self.compound_pct)

    @property
    def harvest_requested(self) -> bool:
        return self.harvest_pct > 0

    @property
    def compound_possible(self) -> bool:
        return self.compound_pct > 0 and self.position_id is not None

    @property
    def collect_enabled(self) -> bool:
        return not self.skip_collect and self.position_id is not None

    # ---------- loaders ----------

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "HarvestConfig":
        return cls.model_validate(dict(data))

    @staticmethod
    def read_json_file(path: str | Path) -> Dict[str, Any]:
        """Raw config mapping from a JSON file; anything but a JSON object is a ValueError."""
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(f"Config file not found: {p}")
        data = json.loads(p.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Expected JSON object in {p}, got {type(data).__name__}")
        return data

    @classmethod
    def from_json_file(cls, path: str | Path) -> "HarvestConfig":
        return cls.from_mapping(cls.read_json_file(path))


class PoolKey(BaseModel):
    """Uniswap v4 PoolKey (currency0 < currency1)."""

    currency0: str
    currency1: str
    fee: int
    tick_spacing: int
    hooks: str

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_tuple(cls, raw: Any) -> "PoolKey":
        c0, c1, fee, spacing, hooks = raw
        return cls(
            currency0=to_checksum(c0),
            currency1=to_checksum(c1),
            fee=int(fee),
            tick_spacing=int(spacing),
            hooks=to_checksum(hooks),
        )

    def as_tuple(self) -> tuple:
        return (self.currency0, self.currency1, int(self.fee), int(self.tick_spacing), self.hooks)

    @property
    def currencies(self) -> tuple[str, str]:
        return self.currency0, self.currency1

    @property
    def has_native_currency(self) -> bool:
        return same_address(self.currency0, ZERO_ADDRESS) or same_address(self.currency1, ZERO_ADDRESS)

    def contains(self, token: str) -> bool:
        return same_address(token, self.currency0) or same_address(token, self.currency1)


class Position(BaseModel):
    position_id: int
    pool_key: PoolKey
    tick_lower: int
    tick_upper: int
    liquidity: int = Field(..., ge=0)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _ticks_ordered(self) -> "Position":
        if self.tick_lower >= self.tick_upper:
            raise ValueError(f"tick_lower ({self.tick_lower}) must be < tick_upper ({self.tick_upper})")
        return self


class FeeBalanceSnapshot(BaseModel):
    """
    Before/after wallet balance around one confirmed mutating call.

    delta is everything that arrived (or left) in between, so it is only
    attributable to the call if nothing else moved the token meanwhile.
    """

    token: str
    before: int
    after: int

    model_config = ConfigDict(frozen=True)

    @property
    def delta(self) -> int:
        return int(self.after) - int(self.before)

    @property
    def received(self) -> int:
        return max(0, self.delta)
