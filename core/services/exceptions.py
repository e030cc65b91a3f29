"""
Error taxonomy for chain interactions.

Every error raised by the chain layer is a `ChainError` carrying a
`retryable` flag. The flag is decided here, close to web3/requests, so the
pipeline never has to inspect error messages itself.
"""

from __future__ import annotations

from typing import Any, Optional

import requests
from web3.exceptions import ContractLogicError, TimeExhausted


class ChainError(Exception):
    """Base class for failures talking to the chain."""

    retryable: bool = False

    def __init__(self, msg: str, *, retryable: Optional[bool] = None):
        super().__init__(msg)
        self.msg = msg
        if retryable is not None:
            self.retryable = bool(retryable)


class RpcTransientError(ChainError):
    """Provider timeout, rate limit or dropped connection."""

    retryable = True


class ContractCallError(ChainError):
    """eth_call / estimateGas reverted or the node rejected the request."""


class TransactionRevertedError(ChainError):
    """
    Mined with status == 0.

    Raised AFTER the tx was included, so gas was spent.
    """

    def __init__(
        self,
        *,
        tx_hash: str,
        receipt: Optional[dict] = None,
        msg: str = "Transaction reverted (status=0)",
    ):
        super().__init__(f"{msg} tx={tx_hash}")
        self.tx_hash = tx_hash
        self.receipt = receipt or {}
        self.msg = msg


class PreconditionError(Exception):
    """
    Missing or inconsistent configuration detected before any mutating call.

    `retryable` is set when the check itself could not be completed because
    the node was unreachable; running again later may succeed.
    """

    retryable: bool = False

    def __init__(self, msg: str, *, retryable: bool = False):
        super().__init__(msg)
        self.retryable = bool(retryable)


class OwnershipError(PreconditionError):
    """The signing wallet does not own the position."""

    def __init__(self, *, position_id: int, owner: str, wallet: str):
        super().__init__(f"Position #{position_id} is owned by {owner}, not by wallet {wallet}")
        self.position_id = position_id
        self.owner = owner
        self.wallet = wallet


_TRANSIENT_MARKERS = ("429", "rate limit", "too many requests", "timeout", "timed out", "connection reset")


def classify_rpc_error(exc: BaseException) -> ChainError:
    """
    Map a raw exception from web3/requests into the ChainError taxonomy.

    Already classified errors are returned unchanged.
    """
    if isinstance(exc, ChainError):
        return exc

    if isinstance(exc, ContractLogicError):
        return ContractCallError(f"Contract call reverted: {exc}")

    if isinstance(exc, TimeExhausted):
        return RpcTransientError(f"Timed out waiting for receipt: {exc}")

    if isinstance(exc, requests.HTTPError):
        status = getattr(getattr(exc, "response", None), "status_code", None)
        if status == 429 or (status is not None and status >= 500):
            return RpcTransientError(f"RPC HTTP {status}: {exc}")
        return ContractCallError(f"RPC HTTP {status}: {exc}")

    if isinstance(exc, (requests.ConnectionError, requests.Timeout, TimeoutError, ConnectionError)):
        return RpcTransientError(f"RPC transport error: {exc}")

    text = str(exc).lower()
    if any(m in text for m in _TRANSIENT_MARKERS):
        return RpcTransientError(str(exc))

    return ContractCallError(str(exc) or exc.__class__.__name__)


def error_details(exc: BaseException) -> dict[str, Any]:
    """Small JSON-friendly description of an error for step results and logs."""
    out: dict[str, Any] = {
        "error_type": exc.__class__.__name__,
        "error_msg": getattr(exc, "msg", None) or str(exc),
        "retryable": bool(getattr(exc, "retryable", False)),
    }
    tx_hash = getattr(exc, "tx_hash", None)
    if tx_hash:
        out["tx_hash"] = tx_hash
    return out
