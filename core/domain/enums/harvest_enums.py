from __future__ import annotations

from enum import StrEnum


class PipelineStep(StrEnum):
    """
    Harvest pipeline states, in execution order.
    """

    CLAIM = "claim"
    COLLECT = "collect"
    AGGREGATE = "aggregate"
    SPLIT = "split"
    COMPOUND = "compound"
    SWAP = "swap"
    TRANSFER = "transfer"
    SUMMARIZE = "summarize"


class StepStatus(StrEnum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class SwapRoute(StrEnum):
    """
    How a token reached the settlement asset.
    """

    NONE = "none"                # already settlement asset
    DIRECT = "direct"            # base asset -> settlement, v3 single hop
    V4_VIA_BASE = "v4_via_base"  # token -> base on v4, then direct
    V3_MULTI_HOP = "v3_multi_hop"


class GasStrategy(StrEnum):
    """
    Padding applied on top of eth_estimateGas.
    """

    DEFAULT = "default"
    BUFFERED = "buffered"
    AGGRESSIVE = "aggressive"
