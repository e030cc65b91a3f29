from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

import httpx

from config import get_settings
from core.services.normalize import dedupe_addresses

logger = logging.getLogger(__name__)


@dataclass
class DexScreenerHttpClient:
    """
    USD price oracle backed by the public DexScreener API.

    Unknown prices are returned as None; callers decide what "unknown" means
    for them (threshold counts it as 0, swaps drop min-out protection).
    """

    base_url: str
    chain_id: str = "base"
    timeout: float = 15.0

    @classmethod
    def from_settings(cls) -> "DexScreenerHttpClient":
        st = get_settings()
        return cls(base_url=(st.PRICE_API_URL or "").rstrip("/"))

    @staticmethod
    def _pick_price(data: Dict[str, Any], chain_id: str, quote_symbol: Optional[str] = None) -> Optional[float]:
        pairs = [p for p in (data.get("pairs") or []) if p.get("chainId") == chain_id and p.get("priceUsd")]
        if not pairs:
            return None

        def depth(p: Dict[str, Any]) -> tuple[float, bool]:
            quoted = bool(quote_symbol) and (p.get("quoteToken") or {}).get("symbol") == quote_symbol
            return float((p.get("liquidity") or {}).get("usd") or 0), quoted

        # deepest pool wins; the preferred quote only breaks ties
        best = max(pairs, key=depth)
        return float(best["priceUsd"])

    async def get_token_price_usd(self, cli: httpx.AsyncClient, token_address: str) -> Optional[float]:
        """
        GET /latest/dex/tokens/{token_address}
        """
        url = f"{self.base_url}/latest/dex/tokens/{token_address}"
        try:
            res = await cli.get(url)
            res.raise_for_status()
            data = res.json() if res.content else {}
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Price lookup failed for %s: %s", token_address, exc)
            return None
        return self._pick_price(data, self.chain_id, quote_symbol="USDC")

    async def get_prices_usd(self, tokens: Iterable[str]) -> Dict[str, Optional[float]]:
        toks = dedupe_addresses(tokens)
        async with httpx.AsyncClient(timeout=self.timeout) as cli:
            prices = await asyncio.gather(*(self.get_token_price_usd(cli, t) for t in toks))
        return dict(zip(toks, prices))

    def prices_usd(self, tokens: Iterable[str]) -> Dict[str, Optional[float]]:
        """Blocking wrapper for sync callers (pipeline, CLI, threadpool views)."""
        return asyncio.run(self.get_prices_usd(tokens))
