"""Known miners and pools, and the display helpers built on them."""

from typing import NamedTuple

from src.data.constants import EXPLORER_URL


class KnownMiner(NamedTuple):
    """Registry entry: display name, pool url and colour."""

    name: str
    url: str
    color: str


POOL_COLORS = {
    "orange": "#C64500",
    "purple": "#4527A0",
    "blue": "#0277BD",
    "green": "#2E7D32",
    "yellow": "#997500",
    "darkpurple": "#662354",
    "darkred": "hsl(356, 48%, 30%)",
    "teal": "#009688",
    "red": "#f44336",
    "slate": "#34495e",
    "brightred": "#C62828",
    "royal": "#0070bc",
    "pink": "#EC407A",
    "grey": "#78909c",
    "lightpurple": "#9c27b0",
    "lime": "#cddc39",
    "brown": "#8d6e63",
}

_BWORK_POOL = KnownMiner("BWORK Mining Pool", "http://pool.basedworktoken.org/", POOL_COLORS["orange"])
_MIKE_RS = KnownMiner("mike.rs pool", "http://mike.rs", POOL_COLORS["green"])
_VEO = KnownMiner("xb.veo.network", "https://xb.veo.network:2096/", POOL_COLORS["pink"])
_PIZZA = KnownMiner("PiZzA pool", "http://gpu.PiZzA", POOL_COLORS["yellow"])

KNOWN_MINERS: dict[str, KnownMiner] = {
    "0x49228d306754af5d16d477149ee50bef5ca286be": _BWORK_POOL,
    "0x98181a5f3b91117426331b54e2a47e8fa74f56b0": _BWORK_POOL,
    "0xce2e772f8bcf36901bacf31dfc67e38954e15754": KnownMiner(
        "Mineable Token Pool", "https://pool.0xmt.com/", POOL_COLORS["orange"]
    ),
    "0xeabe48908503b7efb090f35595fb8d1a4d55bd66": KnownMiner(
        "ABAS Mining Pool", "http://pool.abastoken.org/", POOL_COLORS["orange"]
    ),
    "0x53ce57325c126145de454719b4931600a0bd6fc4": KnownMiner(
        "0xPool", "http://0xPool.io", POOL_COLORS["purple"]
    ),
    "0x98b155d9a42791ce475acc336ae348a72b2e8714": KnownMiner(
        "0xBTCpool", "http://0xBTCpool.com", POOL_COLORS["blue"]
    ),
    "0x363b5534fb8b5f615583c7329c9ca8ce6edaf6e6": _MIKE_RS,
    "0x50212e78d96a183f415e1235e56e64416d972e93": _MIKE_RS,
    "0x02c8832baf93380562b0c8ce18e2f709d6514c60": KnownMiner(
        "mike.rs pool B", "http://b.mike.rs", POOL_COLORS["green"]
    ),
    "0x8dcee1c6302232c4cc5ce7b5ee8be16c1f9fd961": KnownMiner(
        "Mine0xBTC", "http://mine0xbtc.eu", POOL_COLORS["darkpurple"]
    ),
    "0x20744acca6966c0f45a80aa7baf778f4517351a4": KnownMiner(
        "PoolOfD32th", "http://0xbtc.poolofd32th.club", POOL_COLORS["darkred"]
    ),
    "0xd4ddfd51956c19f624e948abc8619e56e5dc3958": KnownMiner(
        "0xMiningPool", "http://0xminingpool.com/", POOL_COLORS["teal"]
    ),
    "0x88c2952c9e9c56e8402d1b6ce6ab986747336b30": KnownMiner(
        "0xbtc.wolfpool.io", "http://wolfpool.io/", POOL_COLORS["red"]
    ),
    "0x540d752a388b4fc1c9deeb1cd3716a2b7875d8a6": KnownMiner(
        "tosti.ro", "http://0xbtc.tosti.ro/", POOL_COLORS["slate"]
    ),
    "0xbbdf0402e51d12950bd8bbd50a25ed1aba5615ef": KnownMiner(
        "ExtremeHash", "http://0xbtc.extremehash.io/", POOL_COLORS["brightred"]
    ),
    "0x7d28994733e6dbb93fc285c01d1639e3203b54e4": KnownMiner(
        "Wutime.com", "http://wutime.com/", POOL_COLORS["royal"]
    ),
    "0x02e03db268488716c161721663501014fa031250": _VEO,
    "0xbf39de3c506f1e809b4e10e00dd22eb331abf334": _VEO,
    "0x5404bd6b428bb8e326880849a61f0e7443ef5381": KnownMiner(
        "666pool", "http://0xbtc.666pool.cn/", POOL_COLORS["grey"]
    ),
    "0x7d3ebd2b56651d164fc36180050e9f6f7b890e9d": KnownMiner(
        "MVIS Mining Pool", "http://mvis.ca", POOL_COLORS["blue"]
    ),
    "0xd3e89550444b7c84e18077b9cbe3d4e3920f257d": KnownMiner(
        "0xPool", "https://0xpool.me/", POOL_COLORS["purple"]
    ),
    "0x6917035f1deecc51fa475be4a2dc5528b92fd6b0": _PIZZA,
    "0x693d59285fefbd6e7be1b687be959eade2a4bf099": _PIZZA,
    "0x697f698dd492d71734bcaec77fd5065fa7a95a63": _PIZZA,
    "0x69ebd94944f0dba3e9416c609fbbe437b45d91ab": _PIZZA,
    "0x69b85604799d16d938835852e497866a7b280323": _PIZZA,
    "0x69ded73bd88a72bd9d9ddfce228eadd05601edd7": _PIZZA,
}
"""Known miner addresses (lowercase). Addresses sharing a name are one pool."""

COLOR_HASH_SEED = 2

NAME_PREFIX_LENGTH = 14
"""Characters of an unknown address shown as its name"""


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value & 0x80000000 else value


def string_hash(seed: int, text: str) -> int:
    """Signed 32-bit ``h * 31 + ord(c)`` string hash.

    Example:
        >>> string_hash(2, "a")
        159
    """
    h = seed
    for char in text:
        h = _to_int32((h << 5) - h + ord(char))
    return h


def get_known_miner(address: str, registry: dict[str, KnownMiner] | None = None) -> KnownMiner | None:
    """Registry entry of ``address`` (case-insensitive), if any."""
    registry = KNOWN_MINERS if registry is None else registry
    return registry.get(address.lower())


def get_miner_name(address: str, registry: dict[str, KnownMiner] | None = None) -> str:
    """Display name of a miner: the registry name or a shortened address.

    Example:
        >>> get_miner_name("0x1234567890abcdef1234567890abcdef12345678")
        '0x1234567890ab...'
    """
    known = get_known_miner(address, registry)
    if known is not None:
        return known.name
    return address[:NAME_PREFIX_LENGTH] + "..."


def get_miner_color(address: str, registry: dict[str, KnownMiner] | None = None) -> str:
    """Colour of a miner: the pool colour, or a hue derived from the address.

    Unknown addresses always map to the same ``hsl(h, 48%, 30%)``.
    """
    known = get_known_miner(address, registry)
    if known is not None:
        return known.color
    hue = string_hash(COLOR_HASH_SEED, address) % 360
    return f"hsl({hue}, 48%, 30%)"


def get_miner_url(address: str, registry: dict[str, KnownMiner] | None = None) -> str:
    """Pool website of a known miner, explorer page otherwise."""
    known = get_known_miner(address, registry)
    if known is not None:
        return known.url
    return f"{EXPLORER_URL}/address/{address}"


def explorer_tx_url(tx_hash: str) -> str:
    """Explorer page of a transaction."""
    return f"{EXPLORER_URL}/tx/{tx_hash}"


def explorer_block_url(block_number: int) -> str:
    """Explorer page of a block."""
    return f"{EXPLORER_URL}/block/{block_number}"


__all__ = [
    "KNOWN_MINERS",
    "POOL_COLORS",
    "KnownMiner",
    "explorer_block_url",
    "explorer_tx_url",
    "get_known_miner",
    "get_miner_color",
    "get_miner_name",
    "get_miner_url",
    "string_hash",
]
