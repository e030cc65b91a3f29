"""
In-memory chain used by the pipeline tests.

The fakes stand in for web3 contract wrappers only. Everything above them
(approvals, balance meter, collector, compounder, swap routing, vault
transfer, orchestrator) is the real code, and the fakes decode the exact
calldata those services build.
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from eth_abi import decode
from web3 import Web3

from adapters.chain.erc20 import MAX_UINT256
from adapters.chain.fee_source import FeeSourceAdapter
from adapters.chain.position_manager import PositionManagerAdapter
from adapters.chain.state_view import StateViewAdapter
from adapters.chain.swap_router import SwapRouterAdapter
from adapters.chain.v4_actions import POOL_KEY_ABI, U48_MAX, U160_MAX, Actions, Commands
from core.domain.schemas.harvest_types import PoolKey
from core.services.approval_service import ApprovalService
from core.services.balance_meter import BalanceMeter
from core.services.compound_executor import CompoundExecutor
from core.services.exceptions import ContractCallError, TransactionRevertedError
from core.services.liquidity_math import Q96, Q128, get_amounts_for_liquidity, get_sqrt_ratio_at_tick, get_tick_at_sqrt_ratio
from core.services.position_collector import PositionCollector
from core.services.vault_transfer import VaultTransfer
from core.use_cases.harvest_pipeline_usecase import HarvestOrchestrator


def cs(addr: str) -> str:
    return Web3.to_checksum_address(addr)


def encode_position_info(tick_lower: int, tick_upper: int, pool_id_prefix: int = 0, has_subscriber: bool = False) -> int:
    """Packs a PositionInfo word the way PositionManager stores it."""
    return (
        (int(pool_id_prefix) << 56)
        | ((int(tick_upper) & 0xFFFFFF) << 32)
        | ((int(tick_lower) & 0xFFFFFF) << 8)
        | (1 if has_subscriber else 0)
    )


WALLET = cs("0x" + "a1" * 20)
VAULT = cs("0x" + "be" * 20)
STRANGER = cs("0x" + "de" * 20)

WETH = cs("0x4200000000000000000000000000000000000006")
USDC = cs("0x833589fcd6edb6e08f4c7c32d4f71b54bda02913")
TOKEN = cs("0x" + "55" * 20)
OTHER = cs("0x" + "77" * 20)
HOOKS = cs("0x" + "cc" * 20)

POSITION_MANAGER = cs("0x" + "0a" * 20)
PERMIT2 = cs("0x" + "0b" * 20)
SWAP_ROUTER = cs("0x" + "0c" * 20)
UNIVERSAL_ROUTER = cs("0x" + "0d" * 20)
ESCROW = cs("0x" + "0e" * 20)
POOL = cs("0x" + "0f" * 20)

# WETH sorts below TOKEN, so WETH is currency0
POOL_KEY = PoolKey(currency0=WETH, currency1=TOKEN, fee=0x800000, tick_spacing=200, hooks=HOOKS)

POSITION_ID = 1078751
E18 = 10**18

DEFAULT_PRICES = {WETH: 3000.0, USDC: 1.0, TOKEN: 3.0, OTHER: 2.0}


class Revert(Exception):
    """require() failure inside a fake contract."""


@dataclass
class FakeCall:
    """What a fake `fn_*` returns in place of a web3 ContractFunction."""

    fn_name: str
    effect: Callable[[str], None]
    args: Dict[str, Any] = field(default_factory=dict)


class FakeChain:
    _STATE = ("balances", "allowances", "permit2", "escrow", "positions", "lp_fees")

    def __init__(self):
        self.balances: Dict[Tuple[str, str], int] = {}
        self.allowances: Dict[Tuple[str, str, str], int] = {}
        self.permit2: Dict[Tuple[str, str, str], Tuple[int, int, int]] = {}
        self.escrow: Dict[Tuple[str, str], int] = {}
        self.claim_extra: Dict[str, int] = {}
        self.positions: Dict[int, Dict[str, Any]] = {}
        self.lp_fees: Dict[int, Tuple[int, int]] = {}
        self.meta = {WETH: ("WETH", 18), USDC: ("USDC", 6), TOKEN: ("TKN", 18), OTHER: ("OTH", 18)}
        # (in, out) -> (num, den): amount_out = amount_in * num // den
        self.rates = {
            (TOKEN, WETH): (1, 1000),
            (WETH, USDC): (3000 * 10**6, E18),
            (OTHER, WETH): (2, 3000),
        }
        self.sqrt_price_x96 = Q96
        self.slot0_error: Optional[Exception] = None
        self.escrow_error: Optional[Exception] = None

    # ---------- state ----------
    def snapshot(self) -> Dict[str, Any]:
        return {k: copy.deepcopy(getattr(self, k)) for k in self._STATE}

    def restore(self, snap: Dict[str, Any]) -> None:
        for k, v in snap.items():
            setattr(self, k, v)

    def balance(self, token: str, owner: str) -> int:
        return self.balances.get((cs(token), cs(owner)), 0)

    def mint(self, token: str, owner: str, amount: int) -> None:
        key = (cs(token), cs(owner))
        self.balances[key] = self.balances.get(key, 0) + int(amount)

    def move(self, token: str, src: str, dst: str, amount: int) -> None:
        if self.balance(token, src) < int(amount):
            raise Revert(f"insufficient {token} balance")
        self.balances[(cs(token), cs(src))] -= int(amount)
        self.mint(token, dst, amount)

    def spend_allowance(self, token: str, owner: str, spender: str, amount: int) -> None:
        key = (cs(token), cs(owner), cs(spender))
        current = self.allowances.get(key, 0)
        if current < int(amount):
            raise Revert(f"insufficient allowance {token} -> {spender}")
        if current != MAX_UINT256:
            self.allowances[key] = current - int(amount)

    def pull_via_permit2(self, token: str, owner: str, spender: str, amount: int) -> None:
        p_amount, expiration, _ = self.permit2.get((cs(owner), cs(token), cs(spender)), (0, 0, 0))
        if p_amount < int(amount) or expiration <= int(time.time()):
            raise Revert("Permit2: AllowanceExpired or InsufficientAllowance")
        self.spend_allowance(token, owner, PERMIT2, amount)
        self.move(token, owner, POOL, amount)

    def quote(self, token_in: str, token_out: str, amount_in: int) -> int:
        rate = self.rates.get((cs(token_in), cs(token_out)))
        if rate is None:
            raise Revert(f"no pool {token_in} -> {token_out}")
        num, den = rate
        return int(amount_in) * num // den

    def add_position(
        self,
        position_id: int = POSITION_ID,
        *,
        owner: str = WALLET,
        pool_key: PoolKey = POOL_KEY,
        tick_lower: int = -2000,
        tick_upper: int = -1000,
        liquidity: int = E18,
    ) -> None:
        self.positions[int(position_id)] = {
            "owner": cs(owner),
            "pool_key": pool_key,
            "tick_lower": tick_lower,
            "tick_upper": tick_upper,
            "liquidity": int(liquidity),
        }


class FakeTxService:
    """
    Records every send. A revert (fail_when or a Revert from the effect) rolls
    the chain back and raises like TxService does for a status 0 receipt.
    """

    def __init__(self, chain: FakeChain, wallet: str = WALLET):
        self.chain = chain
        self.wallet = wallet
        self.sent: List[FakeCall] = []
        self.fail_when: Callable[[FakeCall], bool] = lambda call: False

    def sender_address(self) -> str:
        return self.wallet

    def send(self, fn: FakeCall, *, wait: bool = True, **_: Any) -> dict:
        tx_hash = "0x%064x" % (len(self.sent) + 1)
        self.sent.append(fn)
        if self.fail_when(fn):
            raise TransactionRevertedError(tx_hash=tx_hash, receipt={"status": 0})
        snap = self.chain.snapshot()
        try:
            fn.effect(self.wallet)
        except Revert as exc:
            self.chain.restore(snap)
            raise TransactionRevertedError(tx_hash=tx_hash, receipt={"status": 0}, msg=str(exc)) from exc
        return {"tx_hash": tx_hash, "status": 1}

    def names(self) -> List[str]:
        return [c.fn_name for c in self.sent]


def modify_with(action: int) -> Callable[[FakeCall], bool]:
    """fail_when predicate: modifyLiquidities containing `action`."""
    return lambda call: call.fn_name == "modifyLiquidities" and action in call.args["actions"]


# ---------- tokens / permit2 ----------

class FakeErc20:
    def __init__(self, chain: FakeChain, address: str):
        self.chain = chain
        self.address = cs(address)

    def balance_of(self, owner: str) -> int:
        return self.chain.balance(self.address, owner)

    def allowance(self, owner: str, spender: str) -> int:
        return self.chain.allowances.get((self.address, cs(owner), cs(spender)), 0)

    def fn_approve(self, spender: str, amount: int = MAX_UINT256) -> FakeCall:
        def effect(sender: str) -> None:
            self.chain.allowances[(self.address, sender, cs(spender))] = int(amount)

        return FakeCall("approve", effect, {"token": self.address, "spender": cs(spender), "amount": int(amount)})

    def fn_transfer(self, to_addr: str, amount: int) -> FakeCall:
        def effect(sender: str) -> None:
            self.chain.move(self.address, sender, to_addr, amount)

        return FakeCall("transfer", effect, {"token": self.address, "to": cs(to_addr), "amount": int(amount)})


class FakeTokens:
    def __init__(self, chain: FakeChain):
        self.chain = chain

    def get(self, address: str) -> FakeErc20:
        return FakeErc20(self.chain, address)

    def meta(self, address: str) -> tuple[str, int]:
        return self.chain.meta[cs(address)]


class FakePermit2:
    address = PERMIT2

    def __init__(self, chain: FakeChain):
        self.chain = chain

    def allowance(self, owner: str, token: str, spender: str) -> Tuple[int, int, int]:
        return self.chain.permit2.get((cs(owner), cs(token), cs(spender)), (0, 0, 0))

    def fn_approve(self, token: str, spender: str, amount: int = U160_MAX, expiration: int = U48_MAX) -> FakeCall:
        def effect(sender: str) -> None:
            self.chain.permit2[(sender, cs(token), cs(spender))] = (int(amount), int(expiration), 0)

        return FakeCall("permit2.approve", effect, {"token": cs(token), "spender": cs(spender)})


# ---------- contracts ----------

class FakeFeeSource(FeeSourceAdapter):
    """Escrow reads and claim tx; check_available/claim are the real methods."""

    def __init__(self, chain: FakeChain, address: str):
        self.chain = chain
        self.address = cs(address)

    def available_fees(self, owner: str, token: str) -> int:
        if self.chain.escrow_error is not None:
            raise self.chain.escrow_error
        return self.chain.escrow.get((cs(owner), cs(token)), 0)

    def fn_claim(self, owner: str, token: str) -> FakeCall:
        owner, token = cs(owner), cs(token)

        def effect(sender: str) -> None:
            amount = self.chain.escrow.pop((owner, token), 0)
            self.chain.mint(token, owner, amount + self.chain.claim_extra.get(token, 0))

        return FakeCall("claim", effect, {"owner": owner, "token": token})


class FakePositionManager(PositionManagerAdapter):
    """Reads come from FakeChain.positions; modifyLiquidities decodes the real unlock data."""

    def __init__(self, chain: FakeChain, address: str = POSITION_MANAGER):
        self.chain = chain
        self.address = cs(address)

    def owner_of(self, token_id: int) -> str:
        pos = self.chain.positions.get(int(token_id))
        if pos is None:
            raise ContractCallError(f"ERC721: invalid token ID {token_id}")
        return pos["owner"]

    def get_pool_and_position_info(self, token_id: int) -> Tuple[PoolKey, int]:
        pos = self.chain.positions[int(token_id)]
        return pos["pool_key"], encode_position_info(pos["tick_lower"], pos["tick_upper"], pool_id_prefix=0xABCDEF)

    def get_position_liquidity(self, token_id: int) -> int:
        return self.chain.positions[int(token_id)]["liquidity"]

    def fn_modify_liquidities(self, unlock_data: bytes, deadline: int) -> FakeCall:
        codes, params = decode(["bytes", "bytes[]"], unlock_data)
        actions = list(codes)
        return FakeCall(
            "modifyLiquidities",
            lambda sender: self._apply(sender, actions, list(params)),
            {"actions": actions, "params": list(params), "deadline": int(deadline)},
        )

    def _owned(self, token_id: int, sender: str) -> Dict[str, Any]:
        pos = self.chain.positions.get(int(token_id))
        if pos is None or pos["owner"] != sender:
            raise Revert("NotApproved")
        return pos

    def _amounts(self, pos: Dict[str, Any], liquidity: int) -> Tuple[int, int]:
        return get_amounts_for_liquidity(
            self.chain.sqrt_price_x96,
            get_sqrt_ratio_at_tick(pos["tick_lower"]),
            get_sqrt_ratio_at_tick(pos["tick_upper"]),
            liquidity,
        )

    def _apply(self, sender: str, actions: List[int], params: List[bytes]) -> None:
        credits: Dict[str, int] = {}
        debts: Dict[str, int] = {}

        def add(book: Dict[str, int], token: str, amount: int) -> None:
            book[cs(token)] = book.get(cs(token), 0) + int(amount)

        for code, p in zip(actions, params):
            if code == Actions.DECREASE_LIQUIDITY:
                token_id, liquidity, _, _, _ = decode(["uint256", "uint256", "uint128", "uint128", "bytes"], p)
                pos = self._owned(token_id, sender)
                if liquidity:
                    raise Revert("only fee collection is modelled")
                f0, f1 = self.chain.lp_fees.pop(int(token_id), (0, 0))
                c0, c1 = pos["pool_key"].currencies
                add(credits, c0, f0)
                add(credits, c1, f1)

            elif code == Actions.INCREASE_LIQUIDITY:
                token_id, liquidity, max0, max1, _ = decode(["uint256", "uint256", "uint128", "uint128", "bytes"], p)
                pos = self._owned(token_id, sender)
                a0, a1 = self._amounts(pos, liquidity)
                if a0 > max0 or a1 > max1:
                    raise Revert("MaximumAmountExceeded")
                pos["liquidity"] += int(liquidity)
                c0, c1 = pos["pool_key"].currencies
                add(debts, c0, a0)
                add(debts, c1, a1)

            elif code == Actions.BURN_POSITION:
                token_id, _, _, _ = decode(["uint256", "uint128", "uint128", "bytes"], p)
                pos = self._owned(token_id, sender)
                a0, a1 = self._amounts(pos, pos["liquidity"])
                f0, f1 = self.chain.lp_fees.pop(int(token_id), (0, 0))
                c0, c1 = pos["pool_key"].currencies
                add(credits, c0, a0 + f0)
                add(credits, c1, a1 + f1)
                del self.chain.positions[int(token_id)]

            elif code == Actions.TAKE_PAIR:
                c0, c1, recipient = decode(["address", "address", "address"], p)
                for c in (cs(c0), cs(c1)):
                    self.chain.mint(c, recipient, credits.pop(c, 0))

            elif code == Actions.SETTLE_PAIR:
                c0, c1 = decode(["address", "address"], p)
                for c in (cs(c0), cs(c1)):
                    amount = debts.pop(c, 0)
                    if amount:
                        self.chain.pull_via_permit2(c, sender, self.address, amount)

            else:
                raise Revert(f"unsupported action {code:#x}")

        if any(credits.values()) or any(debts.values()):
            raise Revert("CurrencyNotSettled")


class FakeStateView(StateViewAdapter):
    """
    slot0 from FakeChain; fee growth derived from FakeChain.lp_fees so that the
    real uncollected_fees() math returns exactly those fees. The stored
    "last" growth sits just below 2^256 to exercise the wrap.
    """

    LAST = (1 << 256) - 5

    def __init__(self, chain: FakeChain):
        self.chain = chain
        self.address = cs("0x" + "05" * 20)
        self._salted: Optional[int] = None

    def get_slot0(self, pid: bytes) -> Tuple[int, int, int, int]:
        if self.chain.slot0_error is not None:
            raise self.chain.slot0_error
        sqrt_p = self.chain.sqrt_price_x96
        return sqrt_p, get_tick_at_sqrt_ratio(sqrt_p), 0, 0

    def get_position_info(self, pid, owner, tick_lower, tick_upper, salt) -> Tuple[int, int, int]:
        if cs(owner) != POSITION_MANAGER:
            raise ContractCallError("positions are owned by the PositionManager")
        self._salted = int.from_bytes(salt, "big")
        pos = self.chain.positions[self._salted]
        return pos["liquidity"], self.LAST, self.LAST

    def get_fee_growth_inside(self, pid, tick_lower, tick_upper) -> Tuple[int, int]:
        pos = self.chain.positions[self._salted]
        f0, f1 = self.chain.lp_fees.get(self._salted, (0, 0))
        liq = pos["liquidity"]
        # ceil so floor(growth * L / 2^128) lands exactly on the fee
        g0 = -(-f0 * Q128 // liq)
        g1 = -(-f1 * Q128 // liq)
        return (self.LAST + g0) % (1 << 256), (self.LAST + g1) % (1 << 256)


def decode_v3_path(path: bytes) -> Tuple[List[str], List[int]]:
    tokens = [cs("0x" + path[:20].hex())]
    fees: List[int] = []
    i = 20
    while i < len(path):
        fees.append(int.from_bytes(path[i : i + 3], "big"))
        tokens.append(cs("0x" + path[i + 3 : i + 23].hex()))
        i += 23
    return tokens, fees


class FakeSwapRouter02:
    address = SWAP_ROUTER

    def __init__(self, chain: FakeChain):
        self.chain = chain

    def _swap(self, sender: str, tokens: List[str], amount_in: int, min_out: int, recipient: str) -> None:
        self.chain.spend_allowance(tokens[0], sender, self.address, amount_in)
        out = int(amount_in)
        for a, b in zip(tokens, tokens[1:]):
            out = self.chain.quote(a, b, out)
        if out < int(min_out):
            raise Revert("Too little received")
        self.chain.move(tokens[0], sender, POOL, amount_in)
        self.chain.mint(tokens[-1], recipient, out)

    def fn_exact_input_single(self, token_in, token_out, fee, recipient, amount_in, amount_out_min) -> FakeCall:
        tokens = [cs(token_in), cs(token_out)]
        return FakeCall(
            "exactInputSingle",
            lambda sender: self._swap(sender, tokens, amount_in, amount_out_min, recipient),
            {"tokens": tokens, "fee": int(fee), "amount_in": int(amount_in), "min_out": int(amount_out_min)},
        )

    def fn_exact_input(self, path, recipient, amount_in, amount_out_min) -> FakeCall:
        tokens, fees = decode_v3_path(path)
        return FakeCall(
            "exactInput",
            lambda sender: self._swap(sender, tokens, amount_in, amount_out_min, recipient),
            {"tokens": tokens, "fees": fees, "amount_in": int(amount_in), "min_out": int(amount_out_min)},
        )


class FakeUniversalRouter:
    address = UNIVERSAL_ROUTER

    def __init__(self, chain: FakeChain):
        self.chain = chain

    def fn_execute(self, commands: bytes, inputs: List[bytes], deadline: int) -> FakeCall:
        if commands != bytes([Commands.V4_SWAP]):
            raise ValueError(f"unexpected commands {commands!r}")
        codes, params = decode(["bytes", "bytes[]"], inputs[0])
        if list(codes) != [Actions.SWAP_EXACT_IN_SINGLE, Actions.SETTLE_ALL, Actions.TAKE_ALL]:
            raise ValueError(f"unexpected actions {list(codes)}")
        (swap,) = decode([f"({POOL_KEY_ABI},bool,uint128,uint128,bytes)"], params[0])
        key, zero_for_one, amount_in, min_out, _ = swap
        c0, c1 = cs(key[0]), cs(key[1])
        token_in, token_out = (c0, c1) if zero_for_one else (c1, c0)
        settle_token, settle_max = decode(["address", "uint256"], params[1])
        take_token, take_min = decode(["address", "uint256"], params[2])

        def effect(sender: str) -> None:
            out = self.chain.quote(token_in, token_out, amount_in)
            if out < max(min_out, take_min):
                raise Revert("V4TooLittleReceived")
            self.chain.pull_via_permit2(token_in, sender, self.address, min(amount_in, settle_max))
            self.chain.mint(token_out, sender, out)

        return FakeCall(
            "execute",
            effect,
            {
                "token_in": token_in,
                "token_out": token_out,
                "amount_in": int(amount_in),
                "min_out": int(min_out),
                "settle": (cs(settle_token), int(settle_max)),
                "take": (cs(take_token), int(take_min)),
                "deadline": int(deadline),
            },
        )


class FakePrices:
    def __init__(self, prices: Dict[str, Optional[float]]):
        self.prices = dict(prices)
        self.calls: List[List[str]] = []

    def prices_usd(self, tokens) -> Dict[str, Optional[float]]:
        toks = [cs(t) for t in tokens]
        self.calls.append(toks)
        return {t: self.prices.get(t) for t in toks}


# ---------- harness ----------

@dataclass
class Harness:
    chain: FakeChain
    txs: FakeTxService
    tokens: FakeTokens
    meter: BalanceMeter
    approvals: ApprovalService
    position_manager: FakePositionManager
    state_view: FakeStateView
    swapper: SwapRouterAdapter
    prices: FakePrices
    orchestrator: HarvestOrchestrator

    def sent_actions(self) -> List[List[int]]:
        return [c.args["actions"] for c in self.txs.sent if c.fn_name == "modifyLiquidities"]


def build_harness(chain: FakeChain, prices: Optional[Dict[str, Optional[float]]] = None) -> Harness:
    txs = FakeTxService(chain)
    tokens = FakeTokens(chain)
    meter = BalanceMeter(tokens, WALLET)
    approvals = ApprovalService(tokens, FakePermit2(chain), txs)
    pm = FakePositionManager(chain)
    state_view = FakeStateView(chain)
    swapper = SwapRouterAdapter(
        swap_router=FakeSwapRouter02(chain),
        universal_router=FakeUniversalRouter(chain),
        tokens=tokens,
        approvals=approvals,
        meter=meter,
        txs=txs,
        settlement=USDC,
        base=WETH,
    )
    price_feed = FakePrices(DEFAULT_PRICES if prices is None else prices)
    orchestrator = HarvestOrchestrator(
        txs=txs,
        tokens=tokens,
        meter=meter,
        position_manager=pm,
        fee_source_factory=lambda addr: FakeFeeSource(chain, addr),
        collector=PositionCollector(
            position_manager=pm, approvals=approvals, meter=meter, txs=txs, state_view=state_view
        ),
        compounder=CompoundExecutor(
            position_manager=pm, state_view=state_view, approvals=approvals, meter=meter, txs=txs
        ),
        swapper=swapper,
        vault_transfer=VaultTransfer(tokens=tokens, meter=meter, txs=txs, settlement=USDC),
        prices=price_feed,
        weth=WETH,
        usdc=USDC,
        default_fee_escrow=ESCROW,
    )
    return Harness(
        chain=chain,
        txs=txs,
        tokens=tokens,
        meter=meter,
        approvals=approvals,
        position_manager=pm,
        state_view=state_view,
        swapper=swapper,
        prices=price_feed,
        orchestrator=orchestrator,
    )


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def harness(chain: FakeChain) -> Harness:
    return build_harness(chain)


def fund(chain: FakeChain) -> FakeChain:
    """
    Position #POSITION_ID above its range (ticks -2000..-1000, pool at tick 0),
    0.6 TOKEN in the escrow and 0.4 TOKEN of uncollected LP fees.
    """
    chain.add_position()
    chain.escrow[(WALLET, TOKEN)] = 6 * E18 // 10
    chain.lp_fees[POSITION_ID] = (0, 4 * E18 // 10)
    return chain


@pytest.fixture
def funded(chain: FakeChain) -> FakeChain:
    return fund(chain)
