"""Common configuration constants used across the application."""

# HTTP and Network Constants
DEFAULT_TIMEOUT = 30.0
"""Default HTTP request timeout in seconds"""

EXTENDED_TIMEOUT = 60.0
"""Extended timeout for slow endpoints (multicall, large log ranges)"""

CHAIN_DETECT_TIMEOUT = 2.0
"""Timeout for eth_chainId before falling back to an unknown network"""

# Retry Configuration
MAX_RETRIES = 5
"""Default maximum number of retry attempts"""

RETRY_BASE_DELAY = 2.0
"""Base delay for exponential backoff in seconds"""

RETRY_MAX_DELAY = 60.0
"""Maximum delay between retries in seconds"""

RETRY_JITTER = 1.0
"""Upper bound of the random jitter added to every backoff delay in seconds"""

# HTTP Connection Pooling
MAX_KEEPALIVE_CONNECTIONS = 5
"""Maximum number of keepalive connections in pool"""

MAX_CONNECTIONS = 20
"""Maximum total number of connections (one storage batch in flight)"""

# Chains
KNOWN_CHAINS = {
    1: "Ethereum Mainnet",
    8453: "Base Mainnet",
    84532: "Base Sepolia",
}
"""Chain id to display name for chain detection"""

UNKNOWN_NETWORK = "unknown network"
"""Name reported when chain detection fails or times out"""


__all__ = [
    "CHAIN_DETECT_TIMEOUT",
    "DEFAULT_TIMEOUT",
    "EXTENDED_TIMEOUT",
    "KNOWN_CHAINS",
    "MAX_CONNECTIONS",
    "MAX_KEEPALIVE_CONNECTIONS",
    "MAX_RETRIES",
    "RETRY_BASE_DELAY",
    "RETRY_JITTER",
    "RETRY_MAX_DELAY",
    "UNKNOWN_NETWORK",
]
