from typing import Iterable

# The number of characters to display from the prefix and suffix in the resulting abbreviation
DISPLAY_CHARS = 4
# Values shorter than this are shown in full
INLINE_LENGTH = 6


def humanize_bytes(value: bytes) -> str:
    """
    Shorten ``value`` for log output, e.g. ``bytes48(a1b2..c3d4)``.

    Unlike ``eth_utils.humanize_hash`` this accepts ``bytes`` of any length, so it
    works for public keys (48 bytes) and signatures (96 bytes) alike.
    """
    hex = value.hex()
    if len(value) < INLINE_LENGTH:
        payload = hex
    else:
        payload = f"{hex[:DISPLAY_CHARS]}..{hex[-1 * DISPLAY_CHARS :]}"

    return f"bytes{len(value)}({payload})"


def humanize_public_keys(public_keys: Iterable[bytes]) -> str:
    return ", ".join(map(humanize_bytes, public_keys))
