"""Liquidity position enumeration through the position finder contract.

Positions are read in pages of 50. The first aggregate3 call carries the
maximum staked id, the first staked page and the first unstaked page; the
remaining pages follow one call at a time, a second apart.
"""

from __future__ import annotations

from asyncio import sleep
from typing import TYPE_CHECKING, Any

import httpx

from src.data.constants import (
    B0X_TOKEN_ADDRESS,
    HOOK_ADDRESS,
    POSITION_FINDER_ADDRESS,
    ZERO_X_BTC_ADDRESS,
)
from src.data.multicall.batcher import build_call
from src.data.multicall.models import (
    PoolKey,
    StakedPosition,
    UnstakedPosition,
    UserPositions,
)
from src.data.multicall.pools import POOL_KEY_TYPE, make_pool_key
from src.helpers.abi import AbiFunction
from src.helpers.errors import AggregatorError
from src.helpers.logging import get_logger


if TYPE_CHECKING:
    from src.data.multicall.batcher import MulticallBatcher
    from src.data.multicall.models import Call3, DecodedResult


logger = get_logger(__name__)

PAGE_SIZE = 50
"""Positions per finder call"""

PAGE_DELAY = 1.0
"""Seconds between two paging calls"""

GET_MAX_STAKED_ID = AbiFunction.parse("getMaxStakedIDforUser(address)", "uint256")
GET_STAKED_IDS = AbiFunction.parse(
    "getIDSofStakedTokensForUserwithMinimum(address,address,address,uint256,uint256,uint256,address)",
    "uint256[],uint256[],uint256[],uint128[],uint256[],uint256[],address[],address[],uint256[],int128",
)
FIND_UNSTAKED = AbiFunction.parse(
    "findUserTokenIdswithMinimumIndividual(address,uint256[],address,address,address,uint256)",
    f"uint256[],uint256[],uint256[],uint128[],int128[],int128[],{POOL_KEY_TYPE}[],uint256[]",
)

PAGE_ERRORS = (AggregatorError, httpx.HTTPError)


def _staked_positions(values: tuple[Any, ...]) -> list[StakedPosition]:
    ids, amounts_a, amounts_b, liquidity, staked_at, penalty, currency0, currency1, info, _ = values
    return [
        StakedPosition(
            token_id=ids[i],
            amount_a=amounts_a[i],
            amount_b=amounts_b[i],
            liquidity=liquidity[i],
            time_staked_at=staked_at[i],
            multiplier_penalty=penalty[i],
            currency0=currency0[i],
            currency1=currency1[i],
            pool_info=info[i],
        )
        for i in range(len(ids))
    ]


def _unstaked_positions(values: tuple[Any, ...]) -> list[UnstakedPosition]:
    ids, amounts_a, amounts_b, liquidity, fees_a, fees_b, pool_keys, info = values
    return [
        UnstakedPosition(
            token_id=ids[i],
            amount_a=amounts_a[i],
            amount_b=amounts_b[i],
            liquidity=liquidity[i],
            fees_owed_a=fees_a[i],
            fees_owed_b=fees_b[i],
            pool_key=PoolKey.from_abi_tuple(pool_keys[i]),
            pool_info=info[i],
        )
        for i in range(len(ids))
    ]


class PositionEnumerator:
    """Pages through the staked and unstaked positions of one user."""

    def __init__(
        self,
        batcher: MulticallBatcher,
        *,
        finder_address: str = POSITION_FINDER_ADDRESS,
        token_a: str = B0X_TOKEN_ADDRESS,
        token_b: str = ZERO_X_BTC_ADDRESS,
        target_pool: PoolKey | None = None,
        min_staked_amount: int = 0,
        page_size: int = PAGE_SIZE,
        page_delay: float = PAGE_DELAY,
    ) -> None:
        self.batcher = batcher
        self.finder_address = finder_address
        self.token_a = token_a
        self.token_b = token_b
        self.target_pool = target_pool or make_pool_key(token_a, token_b, HOOK_ADDRESS)
        self.min_staked_amount = min_staked_amount
        self.page_size = page_size
        self.page_delay = page_delay

    def _staked_page(self, user: str, start: int) -> tuple[Call3, AbiFunction]:
        call = build_call(
            self.finder_address,
            GET_STAKED_IDS,
            user,
            self.token_a,
            self.token_b,
            self.min_staked_amount,
            start,
            self.page_size,
            self.target_pool.hooks,
        )
        return call, GET_STAKED_IDS

    def _unstaked_page(self, user: str, token_ids: list[int]) -> tuple[Call3, AbiFunction]:
        call = build_call(
            self.finder_address,
            FIND_UNSTAKED,
            user,
            token_ids,
            self.target_pool.currency0,
            self.target_pool.currency1,
            self.target_pool.hooks,
            0,
        )
        return call, FIND_UNSTAKED

    async def _run_page(
        self, calls: list[tuple[Call3, AbiFunction]], label: str
    ) -> list[DecodedResult] | None:
        try:
            return await self.batcher.aggregate_decoded(calls)
        except PAGE_ERRORS as e:
            logger.warning("Position page %s failed: %s", label, e)
            return None

    async def enumerate(self, user: str, unstaked_token_ids: list[int]) -> UserPositions:
        """Collect every position of ``user``.

        Args:
            user: Wallet address
            unstaked_token_ids: Liquidity NFT ids held by the wallet

        Returns:
            Staked and unstaked positions; failed pages are counted, not raised
        """
        positions = UserPositions(user=user)
        first_unstaked = unstaked_token_ids[: self.page_size]

        calls = [
            (build_call(self.finder_address, GET_MAX_STAKED_ID, user), GET_MAX_STAKED_ID),
            self._staked_page(user, 0),
        ]
        if first_unstaked:
            calls.append(self._unstaked_page(user, first_unstaked))

        results = await self._run_page(calls, "initial")
        if results is None:
            positions.failed_batches += 1
        else:
            max_id, staked, *unstaked = results
            if max_id.success and max_id.values:
                positions.max_staked_id = max_id.values[0]
            if staked.success and staked.values:
                positions.staked.extend(_staked_positions(staked.values))
            if unstaked and unstaked[0].success and unstaked[0].values:
                positions.unstaked.extend(_unstaked_positions(unstaked[0].values))

        for start in range(self.page_size, positions.max_staked_id, self.page_size):
            await sleep(self.page_delay)
            page = await self._run_page([self._staked_page(user, start)], f"staked@{start}")
            if page is None:
                positions.failed_batches += 1
            elif page[0].success and page[0].values:
                positions.staked.extend(_staked_positions(page[0].values))

        for start in range(self.page_size, len(unstaked_token_ids), self.page_size):
            await sleep(self.page_delay)
            token_ids = unstaked_token_ids[start : start + self.page_size]
            page = await self._run_page([self._unstaked_page(user, token_ids)], f"unstaked@{start}")
            if page is None:
                positions.failed_batches += 1
            elif page[0].success and page[0].values:
                positions.unstaked.extend(_unstaked_positions(page[0].values))

        logger.info(
            "Found %d staked and %d unstaked positions for %s",
            len(positions.staked),
            len(positions.unstaked),
            user,
        )
        return positions


async def enumerate_user_positions(
    batcher: MulticallBatcher,
    user: str,
    unstaked_token_ids: list[int] | None = None,
    **kwargs: Any,
) -> UserPositions:
    """Collect every staked and unstaked position of ``user``.

    Example:
        ```python
        positions = await enumerate_user_positions(batcher, wallet, [101, 102])
        print(positions.total_staked_a)
        ```
    """
    enumerator = PositionEnumerator(batcher, **kwargs)
    return await enumerator.enumerate(user, unstaked_token_ids or [])


__all__ = [
    "FIND_UNSTAKED",
    "GET_MAX_STAKED_ID",
    "GET_STAKED_IDS",
    "PAGE_SIZE",
    "PositionEnumerator",
    "enumerate_user_positions",
]
