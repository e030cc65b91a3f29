"""Tests for run configuration and domain models."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from conftest import HOOKS, POOL_KEY, TOKEN, VAULT, WETH
from core.domain.schemas.harvest_types import FeeBalanceSnapshot, HarvestConfig, PoolKey, Position
from core.services.normalize import ZERO_ADDRESS


class TestHarvestConfig:
    def test_defaults(self):
        cfg = HarvestConfig.from_mapping({"token": TOKEN.lower()})

        assert cfg.token == TOKEN
        assert cfg.compound_pct == 100
        assert cfg.min_usd == 0
        assert cfg.slippage_pct == 1.0
        assert cfg.position_id is None
        assert not cfg.harvest_requested
        assert not cfg.compound_possible
        assert not cfg.collect_enabled

    def test_camel_case_aliases(self):
        cfg = HarvestConfig.from_mapping(
            {
                "token": TOKEN,
                "tokenId": "1078751",
                "harvestAddress": VAULT.lower(),
                "compoundPct": 30,
                "minUsd": 12.5,
                "slippage": 2,
                "skipClaim": True,
                "skipLp": False,
                "dryRun": True,
            }
        )

        assert cfg.position_id == 1078751
        assert cfg.vault_address == VAULT
        assert cfg.harvest_pct == 70
        assert cfg.harvest_requested
        assert cfg.compound_possible
        assert cfg.collect_enabled
        assert cfg.skip_claim and cfg.dry_run

    def test_snake_case_names_accepted(self):
        cfg = HarvestConfig.from_mapping({"token": TOKEN, "position_id": 5, "compound_pct": 0})
        assert cfg.position_id == 5
        assert cfg.harvest_pct == 100

    @pytest.mark.parametrize("pct", [-1, 101])
    def test_compound_pct_bounds(self, pct):
        with pytest.raises(ValidationError):
            HarvestConfig.from_mapping({"token": TOKEN, "compoundPct": pct})

    def test_invalid_address(self):
        with pytest.raises(ValidationError):
            HarvestConfig.from_mapping({"token": "0x1234"})

    def test_zero_vault_rejected(self):
        with pytest.raises(ValidationError):
            HarvestConfig.from_mapping({"token": TOKEN, "harvestAddress": ZERO_ADDRESS})

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValidationError):
            HarvestConfig.from_mapping({"token": TOKEN, "compundPct": 50})

    def test_blank_token_id_is_none(self):
        assert HarvestConfig.from_mapping({"token": TOKEN, "tokenId": ""}).position_id is None

    def test_frozen(self):
        cfg = HarvestConfig.from_mapping({"token": TOKEN})
        with pytest.raises(ValidationError):
            cfg.compound_pct = 10

    def test_from_json_file(self, tmp_path):
        path = tmp_path / "harvest.json"
        path.write_text(json.dumps({"token": TOKEN, "tokenId": 7, "compoundPct": 100}), encoding="utf-8")

        cfg = HarvestConfig.from_json_file(path)
        assert cfg.position_id == 7

    def test_from_json_file_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            HarvestConfig.from_json_file(tmp_path / "nope.json")

    def test_from_json_file_not_object(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(ValueError):
            HarvestConfig.from_json_file(path)


class TestPoolKeyAndPosition:
    def test_from_tuple_checksums(self):
        key = PoolKey.from_tuple((WETH.lower(), TOKEN.lower(), 0x800000, 200, HOOKS.lower()))
        assert key == POOL_KEY
        assert key.fee == 0x800000
        assert key.contains(TOKEN.lower())
        assert not key.has_native_currency

    def test_native_currency(self):
        key = PoolKey(currency0=ZERO_ADDRESS, currency1=TOKEN, fee=3000, tick_spacing=60, hooks=ZERO_ADDRESS)
        assert key.has_native_currency

    def test_position_ticks_must_be_ordered(self):
        with pytest.raises(ValidationError):
            Position(position_id=1, pool_key=POOL_KEY, tick_lower=100, tick_upper=100, liquidity=0)

    def test_position_liquidity_non_negative(self):
        with pytest.raises(ValidationError):
            Position(position_id=1, pool_key=POOL_KEY, tick_lower=-100, tick_upper=100, liquidity=-1)


class TestFeeBalanceSnapshot:
    def test_delta_and_received(self):
        snap = FeeBalanceSnapshot(token=TOKEN, before=100, after=250)
        assert snap.delta == 150
        assert snap.received == 150

    def test_outflow_receives_nothing(self):
        snap = FeeBalanceSnapshot(token=TOKEN, before=250, after=100)
        assert snap.delta == -150
        assert snap.received == 0
