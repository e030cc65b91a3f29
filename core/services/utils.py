# core/services/utils.py
import time
from typing import Any
from collections.abc import Mapping, Iterable
from decimal import Decimal
from hexbytes import HexBytes
from web3 import Web3


def to_json_safe(obj: Any) -> Any:
    """
    Recursively convert web3 / HexBytes-heavy structures into plain JSON-serializable primitives.

    - HexBytes -> "0x..." str
    - bytes    -> "0x..." str
    - Mapping  -> {k: to_json_safe(v)}   (covers AttributeDict, dict-like)
    - list/tuple/set -> [to_json_safe(v), ...]
    - everything else -> unchanged if primitive, else str(obj)
    """
    if isinstance(obj, HexBytes):
        return Web3.to_hex(obj)

    if isinstance(obj, (bytes, bytearray)):
        return "0x" + obj.hex()

    if isinstance(obj, (str, int, float, bool)) or obj is None:
        return obj

    # dict-like (IMPORTANT: covers web3.datastructures.AttributeDict)
    if isinstance(obj, Mapping):
        return {str(k): to_json_safe(v) for (k, v) in obj.items()}

    if isinstance(obj, (list, tuple, set)):
        return [to_json_safe(v) for v in obj]

    if isinstance(obj, Iterable):
        return [to_json_safe(v) for v in obj]

    return str(obj)


def format_units(raw: int, decimals: int) -> str:
    """Raw integer amount -> human decimal string without float rounding."""
    q = Decimal(int(raw)) / (Decimal(10) ** int(decimals))
    return format(q.normalize(), "f") if q != 0 else "0"


def deadline_from_now(seconds: int) -> int:
    return int(time.time()) + int(seconds)
