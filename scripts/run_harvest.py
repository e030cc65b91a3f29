# scripts/run_harvest.py

"""
Run the fee harvest pipeline once (cron entry point).

Usage (from project root):

    # claim protocol fees only, keep them in the wallet
    python -m scripts.run_harvest --token 0xTOKEN

    # compound everything back into the LP
    python -m scripts.run_harvest --token 0xTOKEN --token-id 1078751 --compound-pct 100

    # 50/50 compound and harvest to a vault, only when fees are worth $10+
    python -m scripts.run_harvest --token 0xTOKEN --token-id 1078751 \
        --harvest-address 0xVAULT --compound-pct 50 --min-usd 10

    # JSON config, CLI flags override its values
    python -m scripts.run_harvest --config harvest-config.json --dry-run

Exit status is 0 when no step failed, 1 otherwise, 2 for configuration errors.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict

from pydantic import ValidationError

from config import get_settings
from core.domain.schemas.harvest_types import HarvestConfig
from core.services.exceptions import ChainError, PreconditionError
from core.use_cases.harvest_pipeline_usecase import HarvestOrchestrator

logger = logging.getLogger("scripts.run_harvest")

# CLI dest -> JSON key
_FLAG_KEYS = {
    "token": "token",
    "token_id": "tokenId",
    "harvest_address": "harvestAddress",
    "compound_pct": "compoundPct",
    "min_usd": "minUsd",
    "slippage": "slippage",
    "fee_contract": "feeContract",
}
_BOOL_KEYS = {"skip_claim": "skipClaim", "skip_lp": "skipLp", "dry_run": "dryRun"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Claim protocol fees, collect LP fees, then compound and/or harvest them to USDC."
    )
    parser.add_argument("--config", help="JSON config file; CLI flags override its values.")
    parser.add_argument("--token", help="Target (Clanker) token address.")
    parser.add_argument("--token-id", dest="token_id", type=int, help="v4 position NFT id (needed for collect/compound).")
    parser.add_argument("--harvest-address", dest="harvest_address", help="Vault receiving harvested USDC.")
    parser.add_argument("--compound-pct", dest="compound_pct", type=int, help="Percent compounded back into the LP (default 100).")
    parser.add_argument("--min-usd", dest="min_usd", type=float, help="Minimum fee value in USD to act (default 0 = always).")
    parser.add_argument("--slippage", type=float, help="Slippage percent for swaps and compound (default 1).")
    parser.add_argument("--fee-contract", dest="fee_contract", help="Fee escrow contract override.")
    parser.add_argument("--skip-claim", dest="skip_claim", action="store_true", help="Skip the protocol fee claim.")
    parser.add_argument("--skip-lp", dest="skip_lp", action="store_true", help="Skip LP fee collection.")
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", help="Read-only: no transaction is sent.")
    parser.add_argument("--rpc-url", dest="rpc_url", help="Override RPC_URL_DEFAULT.")
    parser.add_argument("--json", dest="as_json", action="store_true", help="Print the full result as JSON.")
    return parser


def merge_config(args: argparse.Namespace) -> HarvestConfig:
    data: Dict[str, Any] = {}
    if args.config:
        data = HarvestConfig.read_json_file(args.config)

    for dest, key in _FLAG_KEYS.items():
        value = getattr(args, dest)
        if value is not None:
            data[key] = value
    for dest, key in _BOOL_KEYS.items():
        if getattr(args, dest):
            data[key] = True

    return HarvestConfig.from_mapping(data)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, (get_settings().LOG_LEVEL or "INFO").upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )

    try:
        config = merge_config(args)
    except (ValidationError, ValueError, FileNotFoundError) as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    try:
        result = HarvestOrchestrator.from_settings(args.rpc_url).run(config)
    except PreconditionError as exc:
        logger.error("Precondition failed%s: %s", " (retryable)" if exc.retryable else "", exc)
        return 2
    except ChainError as exc:
        logger.error("Run aborted by chain error (retryable=%s): %s", exc.retryable, exc)
        return 1

    if args.as_json:
        print(json.dumps(result.as_dict(), indent=2))

    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
