from __future__ import annotations

import logging
import time
from typing import List

from adapters.chain.erc20 import MAX_UINT256

logger = logging.getLogger(__name__)

# Below this ERC20 -> Permit2 allowance a fresh max approval is sent.
PERMIT2_REFRESH_THRESHOLD = (1 << 96) - 1


class ApprovalService:
    """
    Makes sure the wallet's tokens can be pulled by a spender.

    Two flavours:
      - plain ERC20 allowance (SwapRouter02)
      - ERC20 -> Permit2 plus Permit2 -> spender (PositionManager, UniversalRouter)

    Every approval is a confirmed tx; returned lists hold their hashes.
    """

    def __init__(self, tokens, permit2, txs):
        self.tokens = tokens
        self.permit2 = permit2
        self.txs = txs

    @property
    def owner(self) -> str:
        return self.txs.sender_address()

    def ensure_erc20(self, token: str, spender: str, amount: int) -> List[str]:
        erc = self.tokens.get(token)
        current = erc.allowance(self.owner, spender)
        if current >= int(amount):
            return []
        logger.info("Approving %s for %s (allowance %d < %d)", token, spender, current, int(amount))
        out = self.txs.send(erc.fn_approve(spender, MAX_UINT256), wait=True)
        return [out["tx_hash"]]

    def ensure_erc20_to_permit2(self, token: str, amount: int = 0) -> List[str]:
        erc = self.tokens.get(token)
        if erc.allowance(self.owner, self.permit2.address) >= max(int(amount), PERMIT2_REFRESH_THRESHOLD):
            return []
        logger.info("Approving %s for Permit2", token)
        out = self.txs.send(erc.fn_approve(self.permit2.address, MAX_UINT256), wait=True)
        return [out["tx_hash"]]

    def ensure_permit2(self, token: str, spender: str, amount: int) -> List[str]:
        hashes = self.ensure_erc20_to_permit2(token, amount)

        p_amount, p_expiration, _ = self.permit2.allowance(self.owner, token, spender)
        if p_amount < int(amount) or p_expiration <= int(time.time()):
            logger.info("Permit2 approve %s -> %s", token, spender)
            out = self.txs.send(self.permit2.fn_approve(token, spender), wait=True)
            hashes.append(out["tx_hash"])

        return hashes
