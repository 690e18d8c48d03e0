"""Pool fee and price ratio reads for the tracked v4 pools."""

from __future__ import annotations

from typing import TYPE_CHECKING

from src.data.constants import (
    B0X_TOKEN_ADDRESS,
    ETH_ADDRESS,
    HOOK_ADDRESS,
    RIGHTS_TO_0XBTC_ADDRESS,
    SWAPPER_ADDRESS,
    ZERO_X_BTC_ADDRESS,
)
from src.data.multicall.batcher import build_call
from src.data.multicall.models import PoolKey, PriceRatioSnapshot
from src.helpers.abi import AbiFunction
from src.helpers.logging import get_logger


if TYPE_CHECKING:
    from src.data.multicall.batcher import MulticallBatcher


logger = get_logger(__name__)

POOL_KEY_TYPE = "(address,address,uint24,int24,address)"

GET_CURRENT_POOL_FEE = AbiFunction.parse(f"getCurrentPoolFee({POOL_KEY_TYPE})", "uint24")
GET_PRICE_RATIO = AbiFunction.parse(
    "getPriceRatio(address,address,address)", "uint256,address,address,uint8,uint8"
)
GET_SQRT_PRICE_X96 = AbiFunction.parse("getsqrtPricex96(address,address,address)", "uint160")

FEE_DENOMINATOR = 10_000
"""Pool fees are in hundredths of a basis point: fee / 10000 is a percentage"""


def sort_currencies(token_a: str, token_b: str) -> tuple[str, str]:
    """Order two currencies the way pool keys require (case-insensitive).

    Example:
        >>> sort_currencies("0xB", "0xa")
        ('0xa', '0xB')
    """
    if token_a.lower() < token_b.lower():
        return token_a, token_b
    return token_b, token_a


def make_pool_key(token_a: str, token_b: str, hooks: str = HOOK_ADDRESS) -> PoolKey:
    """Pool key of a dynamic-fee pool between two tokens."""
    currency0, currency1 = sort_currencies(token_a, token_b)
    return PoolKey(currency0=currency0, currency1=currency1, hooks=hooks)


def tracked_pool_keys() -> dict[str, PoolKey]:
    """The four pools whose fees are reported, by display name."""
    return {
        "B0x/ETH": make_pool_key(ETH_ADDRESS, B0X_TOKEN_ADDRESS),
        "0xBTC/ETH": make_pool_key(ZERO_X_BTC_ADDRESS, ETH_ADDRESS),
        "B0x/0xBTC": make_pool_key(ZERO_X_BTC_ADDRESS, B0X_TOKEN_ADDRESS),
        "RightsTo0xBTC/0xBTC": make_pool_key(ZERO_X_BTC_ADDRESS, RIGHTS_TO_0XBTC_ADDRESS),
    }


def pool_key_matches(pool_key: PoolKey, target: PoolKey) -> bool:
    """Compare pool keys, ignoring address case."""
    return (
        pool_key.currency0.lower() == target.currency0.lower()
        and pool_key.currency1.lower() == target.currency1.lower()
        and pool_key.fee == target.fee
        and pool_key.tick_spacing == target.tick_spacing
        and pool_key.hooks.lower() == target.hooks.lower()
    )


async def fetch_pool_fees(
    batcher: MulticallBatcher, hook_address: str = HOOK_ADDRESS
) -> dict[str, int | None]:
    """Read the current fee of every tracked pool in one aggregate3 call.

    Args:
        batcher: Multicall batcher
        hook_address: Hook contract reporting the fees

    Returns:
        Fee per pool name, None where the call failed
    """
    keys = tracked_pool_keys()
    calls = [
        (build_call(hook_address, GET_CURRENT_POOL_FEE, key.as_abi_tuple()), GET_CURRENT_POOL_FEE)
        for key in keys.values()
    ]
    results = await batcher.aggregate_decoded(calls)

    fees: dict[str, int | None] = {}
    for name, result in zip(keys, results, strict=True):
        if result.success and result.values:
            fees[name] = result.values[0]
            logger.debug("%s fee: %s%%", name, result.values[0] / FEE_DENOMINATOR)
        else:
            fees[name] = None
            logger.warning("Failed to fetch %s fee: %s", name, result.error)
    return fees


async def fetch_price_ratio(
    batcher: MulticallBatcher,
    previous: PriceRatioSnapshot | None = None,
    *,
    token: str = B0X_TOKEN_ADDRESS,
    token2: str = ZERO_X_BTC_ADDRESS,
    hook_address: str = HOOK_ADDRESS,
    swapper_address: str = SWAPPER_ADDRESS,
) -> PriceRatioSnapshot:
    """Read getPriceRatio and getsqrtPricex96 together.

    A failed half keeps the value of ``previous``. ``changed`` is set when
    either value differs from ``previous``.

    Args:
        batcher: Multicall batcher
        previous: Last snapshot, if any
        token: First pool token
        token2: Second pool token
        hook_address: Pool hook
        swapper_address: Swapper contract exposing the getters

    Returns:
        The new snapshot
    """
    args = (token, token2, hook_address)
    results = await batcher.aggregate_decoded(
        [
            (build_call(swapper_address, GET_PRICE_RATIO, *args), GET_PRICE_RATIO),
            (build_call(swapper_address, GET_SQRT_PRICE_X96, *args), GET_SQRT_PRICE_X96),
        ]
    )
    ratio_result, sqrt_result = results
    snapshot = previous.model_copy(update={"changed": False}) if previous else PriceRatioSnapshot()

    if ratio_result.success and ratio_result.values:
        ratio, token0, token1, decimals0, decimals1 = ratio_result.values
        snapshot = snapshot.model_copy(
            update={
                "ratio": ratio,
                "token0": token0,
                "token1": token1,
                "token0_decimals": decimals0,
                "token1_decimals": decimals1,
            }
        )
    else:
        logger.error("getPriceRatio call failed: %s", ratio_result.error)

    if sqrt_result.success and sqrt_result.values:
        snapshot = snapshot.model_copy(update={"sqrt_price_x96": sqrt_result.values[0]})
    else:
        logger.error("getsqrtPricex96 call failed: %s", sqrt_result.error)

    old_ratio = previous.ratio if previous else None
    old_sqrt = previous.sqrt_price_x96 if previous else None
    changed = snapshot.ratio != old_ratio or snapshot.sqrt_price_x96 != old_sqrt
    if changed:
        logger.info("Price ratio changed: %s -> %s", old_ratio, snapshot.ratio)
    return snapshot.model_copy(update={"changed": changed})


__all__ = [
    "GET_CURRENT_POOL_FEE",
    "GET_PRICE_RATIO",
    "GET_SQRT_PRICE_X96",
    "fetch_pool_fees",
    "fetch_price_ratio",
    "make_pool_key",
    "pool_key_matches",
    "sort_currencies",
    "tracked_pool_keys",
]
