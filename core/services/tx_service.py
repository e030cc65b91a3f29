from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from eth_account import Account
from web3 import Web3
from web3.contract.contract import ContractFunction
from web3.exceptions import TransactionNotFound

from config import get_settings
from core.domain.enums.harvest_enums import GasStrategy
from core.services.exceptions import ContractCallError, TransactionRevertedError, classify_rpc_error
from core.services.retry import call_with_retry
from core.services.utils import to_json_safe

logger = logging.getLogger(__name__)

# node replies when the nonce is taken; only fine if it is taken by this very tx
_ALREADY_SEEN = ("already known", "nonce too low", "known transaction")

_GAS_PADDING = {
    GasStrategy.DEFAULT: (1.0, 0),
    GasStrategy.BUFFERED: (1.25, 10_000),
    GasStrategy.AGGRESSIVE: (1.5, 25_000),
}


class TxService:
    """
    Signs and sends the harvest wallet's transactions, one at a time.

    Every send blocks until the receipt is in, so the next pipeline step
    reads post-transaction balances. Gas is estimated up front; an estimate
    that reverts is raised as ContractCallError and nothing is broadcast.
    """

    def __init__(
        self,
        rpc_url: str | None = None,
        *,
        w3: Web3 | None = None,
        private_key: str | None = None,
        receipt_timeout: int = 180,
    ):
        s = get_settings()
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url or s.RPC_URL_DEFAULT, request_kwargs={"timeout": 30}))
        self.pk = private_key or s.PRIVATE_KEY
        if not self.pk:
            raise ValueError("PRIVATE_KEY is not configured")
        self.account = Account.from_key(self.pk)
        self.receipt_timeout = receipt_timeout

    def sender_address(self) -> str:
        return self.account.address

    def _estimate_gas(self, tx: dict, strategy: GasStrategy) -> int:
        try:
            estimate = int(self.w3.eth.estimate_gas(tx))
        except Exception as exc:
            raise classify_rpc_error(exc) from exc
        factor, extra = _GAS_PADDING.get(strategy, (1.0, 0))
        return int(estimate * factor) + extra

    def _build(self, fn: ContractFunction, value: int, gas_limit: Optional[int], strategy: GasStrategy) -> dict:
        tx = fn.build_transaction(
            {
                "from": self.account.address,
                "nonce": self.w3.eth.get_transaction_count(self.account.address, "pending"),
                "value": int(value or 0),
            }
        )
        tx["gas"] = int(gas_limit) if gas_limit is not None else self._estimate_gas(tx, strategy)
        # Base accepts legacy pricing; keep EIP-1559 fields when web3 filled them in
        if "maxFeePerGas" not in tx and "gasPrice" not in tx:
            tx["gasPrice"] = self.w3.eth.gas_price
        return tx

    def _in_node(self, tx_hash: str) -> bool:
        try:
            return self.w3.eth.get_transaction(tx_hash) is not None
        except TransactionNotFound:
            return False

    def _broadcast(self, signed) -> str:
        try:
            return Web3.to_hex(self.w3.eth.send_raw_transaction(signed.raw_transaction))
        except Exception as exc:
            if not any(s in str(exc).lower() for s in _ALREADY_SEEN):
                raise
            tx_hash = Web3.to_hex(signed.hash)
            if not self._in_node(tx_hash):
                raise ContractCallError(f"Broadcast rejected: {exc}") from exc
            logger.info("Tx %s already known to the node, waiting for it", tx_hash)
            return tx_hash

    @staticmethod
    def _record(tx_hash: str, receipt: Optional[dict], gas_limit: int) -> dict:
        receipt = receipt or {}
        gas_used = int(receipt.get("gasUsed") or 0)
        price = int(receipt.get("effectiveGasPrice") or 0)
        return to_json_safe(
            {
                "tx_hash": tx_hash,
                "status": receipt.get("status"),
                "block_number": receipt.get("blockNumber"),
                "gas_limit": gas_limit,
                "gas_used": gas_used,
                "cost_eth": float(Decimal(gas_used * price) / Decimal(10**18)) if gas_used and price else None,
            }
        )

    def send(
        self,
        fn: ContractFunction,
        *,
        wait: bool = True,
        value: int = 0,
        gas_limit: Optional[int] = None,
        gas_strategy: GasStrategy = GasStrategy.BUFFERED,
    ) -> dict:
        """
        Broadcast `fn` from the harvest wallet.

        The transaction is signed once; retries on transient errors re-send
        the same signed payload, so a retry can never execute it twice.

        Returns {"tx_hash", "status", "block_number", "gas_limit", "gas_used", "cost_eth"}.

        Raises:
            ContractCallError: gas estimation reverted, or the node rejected the
                broadcast (nonce taken by another tx); nothing on-chain.
            TransactionRevertedError: mined with status == 0.
            RpcTransientError: retries exhausted.
        """
        label = getattr(fn, "fn_name", "tx")

        tx = call_with_retry(lambda: self._build(fn, value, gas_limit, gas_strategy), label=f"prepare {label}")
        signed = self.w3.eth.account.sign_transaction(tx, self.pk)
        tx_hash = call_with_retry(lambda: self._broadcast(signed), label=f"send {label}")
        logger.debug("Sent %s: %s (gas limit %d)", label, tx_hash, tx["gas"])

        if not wait:
            return self._record(tx_hash, None, int(tx["gas"]))

        receipt = call_with_retry(
            lambda: dict(self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)),
            label=f"receipt {label}",
        )
        if int(receipt.get("status", 0)) == 0:
            raise TransactionRevertedError(
                tx_hash=tx_hash,
                receipt=to_json_safe(receipt),
                msg=f"{label} reverted (status=0). Possibly out-of-gas or require() failed",
            )
        return self._record(tx_hash, receipt, int(tx["gas"]))
