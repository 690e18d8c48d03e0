"""On-chain addresses, storage slots and protocol constants for B0x on Base."""

# Contracts
POW_CONTRACT_ADDRESS = "0xd44Ee7dAdbF50214cA7009a29D9F88BCcD0E9Ff4"
"""Proof-of-work mining contract (emits Mint, stores target/era/tokensMinted)"""

MULTICALL_ADDRESS = "0xcA11bde05977b3631167028862bE2a173976CA11"
"""Multicall3 universal aggregator"""

POOL_MANAGER_ADDRESS = "0x498581fF718922c3f8e6A244956aF099B2652b2b"
"""Uniswap v4 pool manager, holds the price slots sampled for charts"""

HOOK_ADDRESS = "0x785319f8fCE23Cd733DE94Fd7f34b74A5cAa1000"
"""Dynamic fee hook of the tracked pools"""

SWAPPER_ADDRESS = "0x6c6B14B49Cb4E9771c555689C2D11aF9A7500a6f"
"""Swap helper exposing getPriceRatio / getsqrtPricex96"""

POSITION_FINDER_ADDRESS = "0xe75Af8215042b1919B1b1D38db72C0dE56A5aEBE"
"""Position enumeration helper for liquidity NFTs"""

POSITION_MANAGER_ADDRESS = "0x7c5f5a4bbd8fd63184577525326123b519429bdc"
"""Uniswap v4 position manager (liquidity NFTs)"""

LP_REWARDS_STAKING_ADDRESS = "0x08f489C5017942d3b7c82C1c178877C80492c948"
"""Liquidity rewards staking contract"""

# Tokens
ETH_ADDRESS = "0x0000000000000000000000000000000000000000"
"""Native ETH currency in v4 pool keys"""

B0X_TOKEN_ADDRESS = "0x6B19E31C1813cD00b0d47d798601414b79A3e8AD"
"""B0x token"""

ZERO_X_BTC_ADDRESS = "0xc4D4FD4F4459730d176844c170F2bB323c87Eb3B"
"""0xBTC token"""

WETH_ADDRESS = "0x4200000000000000000000000000000000000006"
"""Wrapped ETH on Base"""

RIGHTS_TO_0XBTC_ADDRESS = "0x2FFa14b113b0a598B07aF6714f42dd75bDDFfD3E"
"""RightsTo0xBTC token"""

USDC_ADDRESS = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
"""USDC on Base"""

# Storage slots
SLOT_MINING_TARGET = 4
"""PoW contract slot holding miningTarget"""

SLOT_LAST_DIFF_START_BLOCK = 6
"""PoW contract slot holding latestDifficultyPeriodStarted"""

SLOT_ERA = 7
"""PoW contract slot holding the era (epoch) counter"""

SLOT_TOKENS_MINTED = 12
"""PoW contract slot holding tokensMinted"""

SLOT_BWORK_ETH_PRICE = "0x995aee68e7c5c17c86d355406ddd29c7cc6c5e6fa9086d304eb932cc98ae7af5"
"""Pool manager slot of the B0x/ETH pool state (sqrtPriceX96 in the low 160 bits)"""

SLOT_USDC_ETH_PRICE = "0xe570f6e770bf85faa3d1dbee2fa168b56036a048a7939edbcd02d7ebddf3f948"
"""Pool manager slot of the USDC/ETH pool state"""

SLOT_Q96_PRICE = "0xd66bf39be2869094cf8d2d31edffab51dc8326eadf3c7611d397d156993996da"
"""Pool slot decoded as an integer Q96 price instead of price * 1e12"""

# Event topics
MINT_TOPIC = "0xcf6fbb9dcea7d07263ab4f5c3a92f53af33dffc421d9d121e1c74b307e68189d"
"""Mint(address indexed from, uint rewardAmount, uint epochCount, bytes32 newChallengeNumber)"""

# Block heights
ETH_BLOCK_START = 30_489_059
"""Genesis floor: no storage sample or chart point at or below this block"""

ETH_BLOCK_START_B0X = 35_930_446
"""First block the mint log scan starts from when nothing is cached"""

HISTORY_START_BLOCK = 30_413_732
"""Lowest block a history range may start at"""

MINING_START_BLOCK = 37_615_331
"""Mints at or below this block are excluded from miner aggregates"""

HEAD_SAFETY_MARGIN = 8
"""Blocks subtracted from the head when planning history ranges"""

SCAN_HEAD_LAG = 2
"""Blocks subtracted from the head before a log scan"""

SECONDS_PER_BLOCK = 2
"""Base block time in seconds"""

BLOCKS_PER_DAY = 24 * 60 * 30
"""Base blocks per day at two-second blocks"""

REFERENCE_BLOCK = 34_966_000
"""Block used to derive timestamps without an RPC call"""

REFERENCE_TIMESTAMP = 1_756_717_747
"""Unix timestamp of REFERENCE_BLOCK"""

# Snapshots
MINED_BLOCKS_SNAPSHOT = "mined_blocks_mainnet.json"
"""Mint dataset snapshot file name under each data source"""

PRICE_SNAPSHOT = "price_data_bwork_mainnetv2.json"
"""Price history snapshot file name under each data source"""

COST_SUMMARY_URL = (
    "https://raw.githubusercontent.com/BasedWorkToken/Based-Work-Token-General/"
    "main/api/CostScript/saveFiles/BWORK_transaction_analysis_cost_summary.json"
)
"""Per-address transaction cost summary used to enrich miner tables"""

EXPLORER_URL = "https://basescan.org"
"""Block explorer used for address and transaction links"""


def contract_prefix(address: str) -> str:
    """First seven characters of a contract address, used in cache keys.

    Example:
        >>> contract_prefix("0x6B19E31C1813cD00b0d47d798601414b79A3e8AD")
        '0x6B19E'
    """
    return address[:7]


__all__ = [
    "B0X_TOKEN_ADDRESS",
    "BLOCKS_PER_DAY",
    "COST_SUMMARY_URL",
    "ETH_ADDRESS",
    "ETH_BLOCK_START",
    "ETH_BLOCK_START_B0X",
    "EXPLORER_URL",
    "HEAD_SAFETY_MARGIN",
    "HISTORY_START_BLOCK",
    "HOOK_ADDRESS",
    "LP_REWARDS_STAKING_ADDRESS",
    "MINED_BLOCKS_SNAPSHOT",
    "MINING_START_BLOCK",
    "MINT_TOPIC",
    "MULTICALL_ADDRESS",
    "POOL_MANAGER_ADDRESS",
    "POSITION_FINDER_ADDRESS",
    "POSITION_MANAGER_ADDRESS",
    "POW_CONTRACT_ADDRESS",
    "PRICE_SNAPSHOT",
    "REFERENCE_BLOCK",
    "REFERENCE_TIMESTAMP",
    "RIGHTS_TO_0XBTC_ADDRESS",
    "SCAN_HEAD_LAG",
    "SECONDS_PER_BLOCK",
    "SLOT_BWORK_ETH_PRICE",
    "SLOT_ERA",
    "SLOT_LAST_DIFF_START_BLOCK",
    "SLOT_MINING_TARGET",
    "SLOT_Q96_PRICE",
    "SLOT_TOKENS_MINTED",
    "SLOT_USDC_ETH_PRICE",
    "SWAPPER_ADDRESS",
    "USDC_ADDRESS",
    "WETH_ADDRESS",
    "ZERO_X_BTC_ADDRESS",
    "contract_prefix",
]
