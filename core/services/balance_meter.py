from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, Tuple, TypeVar

from core.domain.schemas.harvest_types import FeeBalanceSnapshot
from core.services.normalize import dedupe_addresses

T = TypeVar("T")

logger = logging.getLogger(__name__)


class BalanceMeter:
    """
    Measures what a confirmed mutating call moved in or out of the wallet.

    Reads every balance strictly before and strictly after `action`, which
    must block until its receipt. Amounts are never taken from events.
    """

    def __init__(self, tokens, owner: str):
        self.tokens = tokens
        self.owner = owner

    def balances(self, tokens: Iterable[str]) -> Dict[str, int]:
        return {t: self.tokens.get(t).balance_of(self.owner) for t in dedupe_addresses(tokens)}

    def measure(
        self,
        tokens: Iterable[str],
        action: Callable[[], T],
    ) -> Tuple[T, Dict[str, FeeBalanceSnapshot]]:
        """
        Runs `action` between two balance reads.

        If the action raises, nothing is measured and the error propagates.
        """
        before = self.balances(tokens)
        out = action()
        after = self.balances(before.keys())

        snaps = {t: FeeBalanceSnapshot(token=t, before=before[t], after=after[t]) for t in before}
        for t, s in snaps.items():
            if s.delta:
                logger.debug("balance delta %s: %+d", t, s.delta)
        return out, snaps


def received(snaps: Dict[str, FeeBalanceSnapshot]) -> Dict[str, int]:
    """Positive deltas only (what arrived)."""
    return {t: s.received for t, s in snaps.items()}


def spent(snaps: Dict[str, FeeBalanceSnapshot]) -> Dict[str, int]:
    """Negative deltas as positive amounts (what left)."""
    return {t: max(0, -s.delta) for t, s in snaps.items()}
