from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Optional, Tuple

from web3 import Web3

from adapters.chain.erc20 import TokenRegistry
from adapters.chain.fee_source import FeeSourceAdapter
from adapters.chain.permit2 import Permit2Adapter
from adapters.chain.position_manager import PositionManagerAdapter
from adapters.chain.state_view import StateViewAdapter
from adapters.chain.swap_router import SwapRouterAdapter
from adapters.external.pricing.dexscreener_http_client import DexScreenerHttpClient
from config import get_settings
from core.domain.entities.step_result_entity import DRY_RUN_REASON, PipelineResult, StepResult
from core.domain.enums.harvest_enums import PipelineStep, StepStatus
from core.domain.schemas.harvest_types import HarvestConfig, Position
from core.services.approval_service import ApprovalService
from core.services.balance_meter import BalanceMeter
from core.services.compound_executor import CompoundExecutor
from core.services.exceptions import ChainError, OwnershipError, PreconditionError
from core.services.normalize import dedupe_addresses, same_address
from core.services.position_collector import PositionCollector
from core.services.tx_service import TxService
from core.services.utils import format_units
from core.services.vault_transfer import VaultTransfer

logger = logging.getLogger(__name__)


def _add_into(target: Dict[str, int], amounts: Dict[str, int]) -> None:
    for t, v in amounts.items():
        if int(v) > 0:
            target[t] = target.get(t, 0) + int(v)


@dataclass
class HarvestOrchestrator:
    """
    Claim -> Collect -> Aggregate&Threshold -> Split -> Compound -> Swap -> Transfer -> Summarize

    Every mutating call blocks until its receipt, and every amount moving
    between states is a measured balance delta. Step failures are recorded
    and the run carries on where that is safe; only precondition errors are
    raised, always before the first mutating call.
    """

    txs: TxService
    tokens: TokenRegistry
    meter: BalanceMeter
    position_manager: PositionManagerAdapter
    fee_source_factory: Callable[[str], FeeSourceAdapter]
    collector: PositionCollector
    compounder: CompoundExecutor
    swapper: SwapRouterAdapter
    vault_transfer: VaultTransfer
    prices: DexScreenerHttpClient
    weth: str
    usdc: str
    default_fee_escrow: str

    @classmethod
    def from_settings(cls, rpc_url: Optional[str] = None) -> "HarvestOrchestrator":
        s = get_settings()
        w3 = Web3(Web3.HTTPProvider(rpc_url or s.RPC_URL_DEFAULT, request_kwargs={"timeout": 30}))
        txs = TxService(w3=w3)
        tokens = TokenRegistry(w3)
        meter = BalanceMeter(tokens, txs.sender_address())
        approvals = ApprovalService(tokens, Permit2Adapter(w3, s.PERMIT2_ADDRESS), txs)
        pm = PositionManagerAdapter(w3, s.POSITION_MANAGER_ADDRESS)
        state_view = StateViewAdapter(w3, s.STATE_VIEW_ADDRESS)

        return cls(
            txs=txs,
            tokens=tokens,
            meter=meter,
            position_manager=pm,
            fee_source_factory=lambda addr: FeeSourceAdapter(w3, addr),
            collector=PositionCollector(
                position_manager=pm,
                approvals=approvals,
                meter=meter,
                txs=txs,
                state_view=state_view,
                deadline_sec=s.TX_DEADLINE_SEC,
            ),
            compounder=CompoundExecutor(
                position_manager=pm,
                state_view=state_view,
                approvals=approvals,
                meter=meter,
                txs=txs,
                deadline_sec=s.TX_DEADLINE_SEC,
            ),
            swapper=SwapRouterAdapter.from_settings(w3, tokens=tokens, approvals=approvals, meter=meter, txs=txs),
            vault_transfer=VaultTransfer(tokens=tokens, meter=meter, txs=txs, settlement=s.USDC_ADDRESS),
            prices=DexScreenerHttpClient.from_settings(),
            weth=Web3.to_checksum_address(s.WETH_ADDRESS),
            usdc=Web3.to_checksum_address(s.USDC_ADDRESS),
            default_fee_escrow=s.FEE_ESCROW_ADDRESS,
        )

    # ---------- preconditions ----------

    def load_position(self, position_id: int, wallet: str) -> Position:
        try:
            owner = self.position_manager.owner_of(position_id)
            if not same_address(owner, wallet):
                raise OwnershipError(position_id=position_id, owner=owner, wallet=wallet)
            position = self.position_manager.read_position(position_id)
        except ChainError as exc:
            if exc.retryable:
                raise PreconditionError(
                    f"Could not read position #{position_id}, try again later: {exc}", retryable=True
                ) from exc
            raise PreconditionError(f"Position #{position_id} not found: {exc}") from exc
        if position.pool_key.has_native_currency:
            raise PreconditionError(
                f"Position #{position_id} is in a native-currency pool; only ERC-20 pairs are supported"
            )
        return position

    def check_preconditions(self, config: HarvestConfig, wallet: str) -> Optional[Position]:
        if config.harvest_requested and not config.vault_address:
            raise PreconditionError(
                f"harvestAddress is required when compoundPct < 100 (harvest {config.harvest_pct}%)"
            )
        if config.position_id is None:
            return None
        return self.load_position(config.position_id, wallet)

    def _load_token_meta(self, tokens) -> None:
        """Reads decimals for every token the run may touch, before anything is sent."""
        for token in dedupe_addresses([*tokens, self.weth, self.usdc]):
            try:
                self.tokens.meta(token)
            except ChainError as exc:
                raise PreconditionError(
                    f"Could not read token metadata for {token}: {exc}", retryable=exc.retryable
                ) from exc

    # ---------- states ----------

    def _claimable(
        self, config: HarvestConfig, wallet: str, result: PipelineResult
    ) -> Tuple[Optional[FeeSourceAdapter], Dict[str, int]]:
        """Read-only availability check; a None source means the claim step is already settled."""
        if config.skip_claim:
            result.add(StepResult.skipped(PipelineStep.CLAIM, "disabled"))
            return None, {}

        fee_source = self.fee_source_factory(config.fee_escrow or self.default_fee_escrow)
        try:
            available = fee_source.check_available(wallet, [config.token, self.weth])
        except ChainError as exc:
            result.add(StepResult.failed(PipelineStep.CLAIM, exc))
            return None, {}
        return fee_source, available

    def _pending_lp_fees(self, config: HarvestConfig, position: Optional[Position]) -> Dict[str, int]:
        if not config.collect_enabled or position is None or position.liquidity == 0:
            return {}
        return self.collector.preview(position)

    def _fetch_prices(self, tokens) -> Dict[str, float]:
        raw_prices = self.prices.prices_usd(dedupe_addresses([*tokens, self.weth, self.usdc]))
        prices = {t: float(p) for t, p in raw_prices.items() if p}
        prices.setdefault(self.usdc, 1.0)
        return prices

    def _below_threshold(self, config: HarvestConfig, amounts: Dict[str, int], result: PipelineResult) -> bool:
        if config.min_usd <= 0:
            return False
        value = self._usd_value(amounts, result.prices_usd)
        if value >= config.min_usd:
            return False

        result.total_usd = value
        result.below_threshold = True
        logger.info("Below threshold ($%.2f < $%.2f), nothing else is sent", value, config.min_usd)
        result.add(
            StepResult.skipped(
                PipelineStep.AGGREGATE,
                "below threshold",
                amounts={t: v for t, v in amounts.items() if v > 0},
                details={"total_usd": value, "min_usd": config.min_usd},
            )
        )
        return True

    def _claim(
        self,
        config: HarvestConfig,
        wallet: str,
        fee_source: Optional[FeeSourceAdapter],
        available: Dict[str, int],
        result: PipelineResult,
    ) -> None:
        if fee_source is None:
            return

        if not any(v > 0 for v in available.values()):
            result.add(StepResult.skipped(PipelineStep.CLAIM, "nothing available", amounts=available))
            return

        if config.dry_run:
            result.add(StepResult.skipped(PipelineStep.CLAIM, DRY_RUN_REASON, amounts=available))
            _add_into(result.claimed, available)
            return

        for token, amount in available.items():
            r = result.add(fee_source.claim(wallet, token, txs=self.txs, meter=self.meter, expected=amount))
            if r.status == StepStatus.SUCCESS:
                _add_into(result.claimed, r.amounts)

    def _collect(self, config: HarvestConfig, position: Optional[Position], result: PipelineResult) -> bool:
        """False when the run has to stop here."""
        if config.skip_collect:
            result.add(StepResult.skipped(PipelineStep.COLLECT, "disabled"))
            return True
        if position is None:
            result.add(StepResult.skipped(PipelineStep.COLLECT, "no position id"))
            return True

        r = result.add(self.collector.collect(position, dry_run=config.dry_run))
        if r.status == StepStatus.FAILED:
            logger.error("Collect failed, stopping before split: %s", r.reason)
            return False
        _add_into(result.collected, r.amounts)
        return True

    def _usd_value(self, amounts: Dict[str, int], prices: Dict[str, float]) -> float:
        total = Decimal(0)
        for token, amount in amounts.items():
            price = prices.get(token)
            if not price:
                logger.warning("No USD price for %s, counted as $0", token)
                continue
            _, decimals = self.tokens.meta(token)
            total += Decimal(int(amount)) / (Decimal(10) ** decimals) * Decimal(str(price))
        return float(total)

    def _aggregate(self, config: HarvestConfig, result: PipelineResult) -> bool:
        """False when there is nothing (or not enough) to act on."""
        totals: Dict[str, int] = {}
        _add_into(totals, result.claimed)
        _add_into(totals, result.collected)
        result.totals = totals

        if not totals:
            result.add(StepResult.skipped(PipelineStep.AGGREGATE, "nothing to process"))
            return False

        missing = [t for t in totals if t not in result.prices_usd]
        if missing:
            result.prices_usd = {**self._fetch_prices(missing), **result.prices_usd}

        # measured amounts can come in under the preview; those fees stay in the wallet
        if self._below_threshold(config, totals, result):
            return False

        result.total_usd = self._usd_value(totals, result.prices_usd)
        result.add(StepResult.success(PipelineStep.AGGREGATE, amounts=totals, details={"total_usd": result.total_usd}))
        return True

    def _split(self, config: HarvestConfig, position: Optional[Position], result: PipelineResult) -> None:
        compound_alloc: Dict[str, int] = {}
        harvest_alloc: Dict[str, int] = {}
        for token, amount in result.totals.items():
            eligible = position is None or position.pool_key.contains(token)
            c = amount * int(config.compound_pct) // 100 if eligible else 0
            compound_alloc[token] = c
            harvest_alloc[token] = amount - c

        result.compound_alloc = {t: v for t, v in compound_alloc.items() if v > 0}
        result.harvest_alloc = {t: v for t, v in harvest_alloc.items() if v > 0}
        result.add(
            StepResult.success(
                PipelineStep.SPLIT,
                details={
                    "compound_pct": config.compound_pct,
                    "compound": dict(result.compound_alloc),
                    "harvest": dict(result.harvest_alloc),
                },
            )
        )

    def _fall_back_to_harvest(self, config: HarvestConfig, amounts: Dict[str, int], result: PipelineResult) -> None:
        for t, v in amounts.items():
            left = result.compound_alloc.get(t, 0) - int(v)
            if left > 0:
                result.compound_alloc[t] = left
            else:
                result.compound_alloc.pop(t, None)
        if config.vault_address:
            _add_into(result.harvest_alloc, amounts)
        else:
            logger.warning("No harvestAddress configured, %s stays in wallet", amounts)
            _add_into(result.retained, amounts)

    def _compound(self, config: HarvestConfig, position: Optional[Position], result: PipelineResult) -> None:
        alloc = dict(result.compound_alloc)
        if not alloc:
            result.add(StepResult.skipped(PipelineStep.COMPOUND, "nothing allocated to compound"))
            return

        if not config.compound_possible or position is None:
            logger.warning("compoundPct=%d but no tokenId given, compounding disabled", config.compound_pct)
            result.add(StepResult.skipped(PipelineStep.COMPOUND, "compounding disabled: no position id", amounts=alloc))
            self._fall_back_to_harvest(config, alloc, result)
            return

        r = result.add(self.compounder.compound(position, alloc, slippage_pct=config.slippage_pct, dry_run=config.dry_run))

        if r.is_dry_run:
            result.liquidity_added = int(r.details.get("liquidity", 0))
            return

        if r.status != StepStatus.SUCCESS:
            logger.warning("Compound %s (%s), allocation goes to harvest", r.status.value, r.reason)
            self._fall_back_to_harvest(config, alloc, result)
            return

        result.compounded = {t: v for t, v in r.amounts.items() if v > 0}
        result.liquidity_added = int(r.details.get("liquidity", 0))
        leftover = {t: alloc.get(t, 0) - result.compounded.get(t, 0) for t in alloc}
        _add_into(result.retained, leftover)

    def _swap(self, config: HarvestConfig, position: Optional[Position], result: PipelineResult) -> int:
        """Settlement amount to send to the vault."""
        if not config.vault_address:
            if result.harvest_alloc:
                _add_into(result.retained, result.harvest_alloc)
            result.add(StepResult.skipped(PipelineStep.SWAP, "harvest disabled"))
            return 0

        if not result.harvest_alloc:
            result.add(StepResult.skipped(PipelineStep.SWAP, "nothing to harvest"))
            return 0

        pool_key = position.pool_key if position is not None else None

        # base asset last
        order = sorted(result.harvest_alloc.items(), key=lambda kv: same_address(kv[0], self.weth))

        settlement = 0
        for token, amount in order:
            outcome = self.swapper.to_settlement(
                token,
                amount,
                pool_key=pool_key,
                prices=result.prices_usd,
                slippage_pct=config.slippage_pct,
                dry_run=config.dry_run,
            )
            result.swaps.append(outcome)
            result.add(outcome.result)
            if outcome.result.ok:
                settlement += outcome.settlement_out
            elif outcome.intermediate_out > 0:
                # token already sold for the base asset, only the second hop failed
                _add_into(result.retained, {self.weth: outcome.intermediate_out})
            else:
                _add_into(result.retained, {token: amount})
        return settlement

    def _transfer(self, config: HarvestConfig, amount: int, result: PipelineResult) -> None:
        if not config.vault_address:
            return
        r = result.add(self.vault_transfer.transfer(config.vault_address, amount, dry_run=config.dry_run))
        if r.status == StepStatus.SUCCESS:
            result.harvested_settlement = int(r.amounts.get(self.usdc, 0))
        elif r.status == StepStatus.FAILED:
            _add_into(result.retained, {self.usdc: amount})

    def _summarize(self, config: HarvestConfig, result: PipelineResult) -> PipelineResult:
        def fmt(amounts: Dict[str, int]) -> str:
            parts = []
            for t, v in amounts.items():
                sym, dec = self.tokens.meta(t)
                parts.append(f"{format_units(v, dec)} {sym}")
            return ", ".join(parts) or "-"

        failed = [r for r in result.steps if r.status == StepStatus.FAILED]
        result.add(
            StepResult.success(
                PipelineStep.SUMMARIZE,
                details={"failed_steps": [r.step.value for r in failed], "dry_run": config.dry_run},
            )
        )
        logger.info(
            "Harvest %s | total $%.2f | claimed: %s | collected: %s | compounded: %s (L+%d) | harvested: %s | retained: %s%s",
            "OK" if result.success else "WITH FAILURES",
            result.total_usd,
            fmt(result.claimed),
            fmt(result.collected),
            fmt(result.compounded),
            result.liquidity_added,
            fmt({self.usdc: result.harvested_settlement} if result.harvested_settlement else {}),
            fmt(result.retained),
            " | below threshold" if result.below_threshold else "",
        )
        for r in failed:
            logger.error("Step %s failed%s: %s", r.step.value, f" ({r.token})" if r.token else "", r.reason)
        return result

    # ---------- public ----------

    def run(self, config: HarvestConfig) -> PipelineResult:
        wallet = self.txs.sender_address()
        position = self.check_preconditions(config, wallet)

        result = PipelineResult(dry_run=config.dry_run, vault_address=config.vault_address)
        logger.info(
            "Harvest run: token=%s position=%s compound=%d%% minUsd=%.2f dryRun=%s",
            config.token, config.position_id, config.compound_pct, config.min_usd, config.dry_run,
        )

        # the threshold is checked against read-only previews before anything is sent
        fee_source, available = self._claimable(config, wallet, result)
        pending = self._pending_lp_fees(config, position)
        expected: Dict[str, int] = {}
        _add_into(expected, available)
        _add_into(expected, pending)
        pool_tokens = position.pool_key.currencies if position is not None else ()
        self._load_token_meta([*expected, *pool_tokens])
        result.prices_usd = self._fetch_prices([*expected, *pool_tokens])
        if self._below_threshold(config, expected, result):
            return self._summarize(config, result)

        self._claim(config, wallet, fee_source, available, result)
        if not self._collect(config, position, result):
            return self._summarize(config, result)
        if not self._aggregate(config, result):
            return self._summarize(config, result)

        self._split(config, position, result)
        self._compound(config, position, result)
        settlement = self._swap(config, position, result)
        self._transfer(config, settlement, result)
        return self._summarize(config, result)

    def preview(self, config: HarvestConfig) -> PipelineResult:
        """Same run with every mutating call suppressed."""
        return self.run(config.model_copy(update={"dry_run": True}))
