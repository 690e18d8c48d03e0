"""Constants of the chart and miner derivations."""

MAXIMUM_TARGET = 2**234
"""Target at difficulty 1: difficulty = MAXIMUM_TARGET // target"""

HASHRATE_MULTIPLIER = 2**22
"""Hashes per unit of difficulty"""

IDEAL_BLOCK_TIME_SECONDS = 600
"""Target seconds between two reward periods"""

EXPECTED_ERAS_PER_BLOCK = 1 / 80
"""Era advance per chain block when the network mines on target"""

ERA_SCALE = 3.5
"""Era to mint scaling applied to the era delta per block"""

REWARD_TIME_ADJUSTMENT = 8
"""Mints per epoch, divides the average reward time"""

PRICE_SCALE = 10**12
"""Scale of E12-decoded pool prices"""

REVENUE_HASHRATE_UNIT = 31_000_000_000
"""Reference hashrate (H/s) of the revenue estimate"""

HASHRATE_UNITS = [
    (1e15, "PH/s"),
    (1e12, "TH/s"),
    (1e9, "GH/s"),
    (1e6, "MH/s"),
    (1e3, "KH/s"),
]
"""Hashrate display thresholds, largest first"""


__all__ = [
    "ERA_SCALE",
    "EXPECTED_ERAS_PER_BLOCK",
    "HASHRATE_MULTIPLIER",
    "HASHRATE_UNITS",
    "IDEAL_BLOCK_TIME_SECONDS",
    "MAXIMUM_TARGET",
    "PRICE_SCALE",
    "REVENUE_HASHRATE_UNIT",
    "REWARD_TIME_ADJUSTMENT",
]
