from __future__ import annotations

import logging
from dataclasses import dataclass

from web3 import Web3

from adapters.chain.erc20 import TokenRegistry
from adapters.chain.position_manager import PositionManagerAdapter
from adapters.chain.v4_actions import burn_position, encode_unlock_data, take_pair
from config import get_settings
from core.services.balance_meter import BalanceMeter, received
from core.services.exceptions import ContractCallError, OwnershipError, PreconditionError
from core.services.normalize import same_address
from core.services.tx_service import TxService
from core.services.utils import deadline_from_now, to_json_safe

logger = logging.getLogger(__name__)


@dataclass
class BurnPositionUseCase:
    """
    Burns a v4 position NFT: remaining liquidity and fees are paid out to the
    wallet via TAKE_PAIR, then the token is destroyed.

    Unlike the harvest pipeline, failures here are raised to the caller.
    """

    txs: TxService
    tokens: TokenRegistry
    position_manager: PositionManagerAdapter
    deadline_sec: int = 300

    @classmethod
    def from_settings(cls, rpc_url: str | None = None) -> "BurnPositionUseCase":
        s = get_settings()
        w3 = Web3(Web3.HTTPProvider(rpc_url or s.RPC_URL_DEFAULT, request_kwargs={"timeout": 30}))
        return cls(
            txs=TxService(w3=w3),
            tokens=TokenRegistry(w3),
            position_manager=PositionManagerAdapter(w3, s.POSITION_MANAGER_ADDRESS),
            deadline_sec=s.TX_DEADLINE_SEC,
        )

    def burn(self, position_id: int, *, dry_run: bool = False) -> dict:
        wallet = self.txs.sender_address()
        try:
            owner = self.position_manager.owner_of(position_id)
        except ContractCallError as exc:
            raise PreconditionError(f"Position #{position_id} not found: {exc}") from exc
        if not same_address(owner, wallet):
            raise OwnershipError(position_id=position_id, owner=owner, wallet=wallet)

        position = self.position_manager.read_position(position_id)
        c0, c1 = position.pool_key.currencies
        unlock = encode_unlock_data(
            [
                burn_position(position_id, 0, 0),
                take_pair(c0, c1, wallet),
            ]
        )

        base = {
            "position_id": int(position_id),
            "pool_key": position.pool_key.model_dump(),
            "tick_lower": position.tick_lower,
            "tick_upper": position.tick_upper,
            "liquidity": position.liquidity,
            "unlock_data": unlock,
        }

        if dry_run:
            logger.info("Burn #%d (dry run): liquidity=%d, nothing sent", position_id, position.liquidity)
            return to_json_safe({**base, "dry_run": True, "tx": None, "received": {}})

        meter = BalanceMeter(self.tokens, wallet)
        fn = self.position_manager.fn_modify_liquidities(unlock, deadline_from_now(self.deadline_sec))
        tx, snaps = meter.measure([c0, c1], lambda: self.txs.send(fn, wait=True))
        paid_out = received(snaps)
        logger.info("Burned #%d (tx %s), received %s", position_id, tx["tx_hash"], paid_out)

        return to_json_safe({**base, "dry_run": False, "tx": tx, "received": paid_out})
