# scripts/burn_position.py

"""
Burn a Uniswap v4 position owned by the configured wallet.

    python -m scripts.burn_position --token-id 1078751 --dry-run
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from config import get_settings
from core.services.exceptions import ChainError, PreconditionError
from core.use_cases.burn_position_usecase import BurnPositionUseCase

logger = logging.getLogger("scripts.burn_position")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Burn a v4 position (pays out remaining liquidity and fees).")
    parser.add_argument("--token-id", dest="token_id", type=int, required=True, help="Position NFT id.")
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", help="Encode only, send nothing.")
    parser.add_argument("--rpc-url", dest="rpc_url", help="Override RPC_URL_DEFAULT.")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, (get_settings().LOG_LEVEL or "INFO").upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )

    try:
        out = BurnPositionUseCase.from_settings(args.rpc_url).burn(args.token_id, dry_run=args.dry_run)
    except PreconditionError as exc:
        logger.error("Precondition failed: %s", exc)
        return 2
    except ChainError as exc:
        logger.error("Burn failed: %s", exc)
        return 1

    print(json.dumps(out, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
