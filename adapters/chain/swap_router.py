from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, Optional

from web3 import Web3

from adapters.chain.base import ContractAdapter
from adapters.chain.v4_actions import (
    encode_v3_path,
    encode_v4_swap_input,
    settle_all,
    swap_exact_in_single,
    take_all,
    U128_MAX,
)
from config import get_settings
from core.domain.entities.step_result_entity import DRY_RUN_REASON, StepResult, SwapOutcome
from core.domain.enums.harvest_enums import PipelineStep, SwapRoute
from core.domain.schemas.harvest_types import PoolKey
from core.services.approval_service import ApprovalService
from core.services.balance_meter import BalanceMeter
from core.services.exceptions import ChainError, ContractCallError
from core.services.normalize import same_address
from core.services.utils import deadline_from_now

logger = logging.getLogger(__name__)

ABI_SWAP_ROUTER_02 = [
    {
        "name": "exactInputSingle",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {
                "name": "params",
                "type": "tuple",
                "components": [
                    {"name": "tokenIn", "type": "address"},
                    {"name": "tokenOut", "type": "address"},
                    {"name": "fee", "type": "uint24"},
                    {"name": "recipient", "type": "address"},
                    {"name": "amountIn", "type": "uint256"},
                    {"name": "amountOutMinimum", "type": "uint256"},
                    {"name": "sqrtPriceLimitX96", "type": "uint160"},
                ],
            }
        ],
        "outputs": [{"name": "amountOut", "type": "uint256"}],
    },
    {
        "name": "exactInput",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {
                "name": "params",
                "type": "tuple",
                "components": [
                    {"name": "path", "type": "bytes"},
                    {"name": "recipient", "type": "address"},
                    {"name": "amountIn", "type": "uint256"},
                    {"name": "amountOutMinimum", "type": "uint256"},
                ],
            }
        ],
        "outputs": [{"name": "amountOut", "type": "uint256"}],
    },
]

ABI_UNIVERSAL_ROUTER = [
    {
        "name": "execute",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {"name": "commands", "type": "bytes"},
            {"name": "inputs", "type": "bytes[]"},
            {"name": "deadline", "type": "uint256"},
        ],
        "outputs": [],
    },
]


class SwapRouter02Adapter(ContractAdapter):
    """Uniswap v3 SwapRouter02 (no deadline in params on Base)."""

    ABI = ABI_SWAP_ROUTER_02

    def fn_exact_input_single(self, token_in: str, token_out: str, fee: int, recipient: str, amount_in: int, amount_out_min: int):
        params = (
            Web3.to_checksum_address(token_in),
            Web3.to_checksum_address(token_out),
            int(fee),
            Web3.to_checksum_address(recipient),
            int(amount_in),
            int(amount_out_min),
            0,
        )
        return self.contract.functions.exactInputSingle(params)

    def fn_exact_input(self, path: bytes, recipient: str, amount_in: int, amount_out_min: int):
        params = (path, Web3.to_checksum_address(recipient), int(amount_in), int(amount_out_min))
        return self.contract.functions.exactInput(params)


class UniversalRouterAdapter(ContractAdapter):
    ABI = ABI_UNIVERSAL_ROUTER

    def fn_execute(self, commands: bytes, inputs: list[bytes], deadline: int):
        return self.contract.functions.execute(commands, inputs, int(deadline))


def min_amount_out(
    amount_in: int,
    dec_in: int,
    price_in: Optional[float],
    dec_out: int,
    price_out: Optional[float],
    slippage_pct: float,
) -> int:
    """
    Oracle-derived floor for one hop:
        amount_in * price_in / price_out * (1 - slippage)

    0 (no protection) when either price is unknown.
    """
    if not price_in or not price_out or price_in <= 0 or price_out <= 0:
        return 0
    human_in = Decimal(int(amount_in)) / (Decimal(10) ** int(dec_in))
    expected = human_in * Decimal(str(price_in)) / Decimal(str(price_out))
    floor = expected * (Decimal(1) - Decimal(str(slippage_pct)) / Decimal(100))
    return max(0, int(floor * (Decimal(10) ** int(dec_out))))


class SwapRouterAdapter:
    """
    Routes a harvest allocation into the settlement asset (USDC).

    Route selection, in order:
      - settlement asset itself: passes through
      - base asset (WETH): SwapRouter02 exactInputSingle at the WETH/USDC fee tier
      - token with a v4 pool against WETH: UniversalRouter V4_SWAP to WETH,
        then the WETH actually received goes through the direct hop
      - anything else: v3 exactInput token -> WETH -> USDC

    Every amount reported is a measured balance delta. Failures are returned
    per token, never raised.
    """

    def __init__(
        self,
        *,
        swap_router: SwapRouter02Adapter,
        universal_router: UniversalRouterAdapter,
        tokens,
        approvals: ApprovalService,
        meter: BalanceMeter,
        txs,
        settlement: str,
        base: str,
        base_settlement_fee: int = 500,
        intermediate_fee: int = 10_000,
        deadline_sec: int = 300,
    ):
        self.swap_router = swap_router
        self.universal_router = universal_router
        self.tokens = tokens
        self.approvals = approvals
        self.meter = meter
        self.txs = txs
        self.settlement = Web3.to_checksum_address(settlement)
        self.base = Web3.to_checksum_address(base)
        self.base_settlement_fee = int(base_settlement_fee)
        self.intermediate_fee = int(intermediate_fee)
        self.deadline_sec = int(deadline_sec)

    @classmethod
    def from_settings(cls, w3: Web3, *, tokens, approvals, meter, txs) -> "SwapRouterAdapter":
        s = get_settings()
        return cls(
            swap_router=SwapRouter02Adapter(w3, s.SWAP_ROUTER_02_ADDRESS),
            universal_router=UniversalRouterAdapter(w3, s.UNIVERSAL_ROUTER_ADDRESS),
            tokens=tokens,
            approvals=approvals,
            meter=meter,
            txs=txs,
            settlement=s.USDC_ADDRESS,
            base=s.WETH_ADDRESS,
            base_settlement_fee=s.WETH_USDC_FEE,
            intermediate_fee=s.V3_INTERMEDIATE_FEE,
            deadline_sec=s.TX_DEADLINE_SEC,
        )

    @property
    def wallet(self) -> str:
        return self.txs.sender_address()

    # ---------- routing ----------

    def route_for(self, token: str, pool_key: Optional[PoolKey] = None) -> SwapRoute:
        if same_address(token, self.settlement):
            return SwapRoute.NONE
        if same_address(token, self.base):
            return SwapRoute.DIRECT
        if pool_key is not None and pool_key.contains(token) and pool_key.contains(self.base):
            return SwapRoute.V4_VIA_BASE
        return SwapRoute.V3_MULTI_HOP

    def _min_out(self, token_in: str, amount_in: int, token_out: str, prices: Dict[str, float], slippage_pct: float) -> int:
        _, dec_in = self.tokens.meta(token_in)
        _, dec_out = self.tokens.meta(token_out)
        out = min_amount_out(
            amount_in,
            dec_in,
            prices.get(Web3.to_checksum_address(token_in)),
            dec_out,
            prices.get(Web3.to_checksum_address(token_out)),
            slippage_pct,
        )
        if out == 0:
            logger.warning("No price for %s -> %s, swapping without min-out protection", token_in, token_out)
        return out

    # ---------- hops ----------

    def _direct(self, amount_in: int, prices: Dict[str, float], slippage_pct: float) -> tuple[int, list[str]]:
        hashes = self.approvals.ensure_erc20(self.base, self.swap_router.address, amount_in)
        min_out = self._min_out(self.base, amount_in, self.settlement, prices, slippage_pct)
        fn = self.swap_router.fn_exact_input_single(
            self.base, self.settlement, self.base_settlement_fee, self.wallet, amount_in, min_out
        )
        out, snaps = self.meter.measure([self.settlement], lambda: self.txs.send(fn, wait=True))
        hashes.append(out["tx_hash"])
        return snaps[self.settlement].received, hashes

    def _v4_to_base(
        self, token: str, amount_in: int, pool_key: PoolKey, prices: Dict[str, float], slippage_pct: float
    ) -> tuple[int, list[str]]:
        if int(amount_in) > U128_MAX:
            raise ContractCallError("amount_in exceeds uint128")
        hashes = self.approvals.ensure_permit2(token, self.universal_router.address, amount_in)
        min_out = self._min_out(token, amount_in, self.base, prices, slippage_pct)
        zero_for_one = same_address(token, pool_key.currency0)
        commands, inputs = encode_v4_swap_input(
            [
                swap_exact_in_single(pool_key, zero_for_one, amount_in, min_out),
                settle_all(token, amount_in),
                take_all(self.base, min_out),
            ]
        )
        fn = self.universal_router.fn_execute(commands, inputs, deadline_from_now(self.deadline_sec))
        out, snaps = self.meter.measure([self.base], lambda: self.txs.send(fn, wait=True))
        hashes.append(out["tx_hash"])
        return snaps[self.base].received, hashes

    def _v3_multi_hop(self, token: str, amount_in: int, prices: Dict[str, float], slippage_pct: float) -> tuple[int, list[str]]:
        hashes = self.approvals.ensure_erc20(token, self.swap_router.address, amount_in)
        min_out = self._min_out(token, amount_in, self.settlement, prices, slippage_pct)
        path = encode_v3_path(
            [token, self.base, self.settlement],
            [self.intermediate_fee, self.base_settlement_fee],
        )
        fn = self.swap_router.fn_exact_input(path, self.wallet, amount_in, min_out)
        out, snaps = self.meter.measure([self.settlement], lambda: self.txs.send(fn, wait=True))
        hashes.append(out["tx_hash"])
        return snaps[self.settlement].received, hashes

    # ---------- public ----------

    def to_settlement(
        self,
        token: str,
        amount: int,
        *,
        pool_key: Optional[PoolKey] = None,
        prices: Optional[Dict[str, float]] = None,
        slippage_pct: float = 1.0,
        dry_run: bool = False,
    ) -> SwapOutcome:
        token = Web3.to_checksum_address(token)
        amount = int(amount)
        prices = prices or {}
        route = self.route_for(token, pool_key)

        if amount <= 0:
            return SwapOutcome(
                token=token, amount_in=0, route=route,
                result=StepResult.skipped(PipelineStep.SWAP, "nothing to swap", token=token),
            )

        if route == SwapRoute.NONE:
            return SwapOutcome(
                token=token, amount_in=amount, route=route, settlement_out=amount,
                result=StepResult.skipped(PipelineStep.SWAP, "already settlement asset", token=token, amounts={token: amount}),
            )

        if dry_run:
            return SwapOutcome(
                token=token, amount_in=amount, route=route,
                result=StepResult.skipped(PipelineStep.SWAP, DRY_RUN_REASON, token=token, details={"route": route.value}),
            )

        hashes: list[str] = []
        intermediate = 0
        try:
            if route == SwapRoute.DIRECT:
                usdc, hashes = self._direct(amount, prices, slippage_pct)
            elif route == SwapRoute.V4_VIA_BASE:
                intermediate, hashes = self._v4_to_base(token, amount, pool_key, prices, slippage_pct)
                if intermediate <= 0:
                    raise ContractCallError("v4 swap returned no base asset")
                usdc, more = self._direct(intermediate, prices, slippage_pct)
                hashes += more
            else:
                usdc, hashes = self._v3_multi_hop(token, amount, prices, slippage_pct)
        except ChainError as exc:
            logger.error("Swap %s -> settlement failed (%s): %s", token, route.value, exc)
            return SwapOutcome(
                token=token, amount_in=amount, route=route, intermediate_out=intermediate,
                result=StepResult.failed(
                    PipelineStep.SWAP, exc, token=token, tx_hashes=hashes,
                    details={"route": route.value, "intermediate_out": intermediate},
                ),
            )

        logger.info("Swapped %d %s -> %d settlement via %s", amount, token, usdc, route.value)
        return SwapOutcome(
            token=token, amount_in=amount, route=route, settlement_out=usdc, intermediate_out=intermediate,
            result=StepResult.success(
                PipelineStep.SWAP, token=token, tx_hashes=hashes,
                amounts={token: amount, self.settlement: usdc}, details={"route": route.value},
            ),
        )
