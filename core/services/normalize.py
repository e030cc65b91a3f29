from __future__ import annotations

from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _norm(a: str | None) -> str:
    return (a or "").strip()


def _norm_lower(a: str | None) -> str:
    return _norm(a).lower()


def same_address(a: str | None, b: str | None) -> bool:
    return bool(_norm(a)) and _norm_lower(a) == _norm_lower(b)


def to_checksum(addr: str | None) -> str:
    addr = _norm(addr)
    if not Web3.is_address(addr):
        raise ValueError(f"invalid address: {addr!r}")
    return Web3.to_checksum_address(addr)


def _require_nonzero(name: str, addr: str | None) -> str:
    addr = _norm(addr)
    if not addr or _norm_lower(addr) == ZERO_ADDRESS:
        raise ValueError(f"{name} must not be zero address.")
    return to_checksum(addr)


def dedupe_addresses(addrs) -> list[str]:
    """Checksummed addresses in first-seen order, case-insensitive unique."""
    seen: set[str] = set()
    out: list[str] = []
    for a in addrs:
        if not _norm(a):
            continue
        key = _norm_lower(a)
        if key in seen:
            continue
        seen.add(key)
        out.append(to_checksum(a))
    return out
