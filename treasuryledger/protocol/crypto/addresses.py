import bech32 # type: ignore
from .hash import sha256
from typing import Tuple, Optional

DEFAULT_PREFIX = "trs"

def address_from_bytes(h20: bytes, prefix: str = DEFAULT_PREFIX) -> str:
    """Encodes a 20-byte identity as a Bech32 address."""
    if len(h20) != 20:
        raise ValueError(f"Address payload must be 20 bytes, got {len(h20)}")

    five_bit_r = bech32.convertbits(h20, 8, 5)
    if five_bit_r is None:
        raise ValueError("Error converting to bech32 words")

    return bech32.bech32_encode(prefix, five_bit_r)

def address_from_seed(seed: bytes, prefix: str = DEFAULT_PREFIX) -> str:
    """Deterministic address for a seed (test accounts, genesis labels)."""
    return address_from_bytes(sha256(seed)[:20], prefix=prefix)

def decode_address(addr: str) -> Tuple[str, bytes]:
    """Decodes Bech32 address to (prefix, h20_bytes)."""
    hrp, data = bech32.bech32_decode(addr)
    if hrp is None or data is None:
        raise ValueError("Invalid bech32 address")

    decoded = bech32.convertbits(data, 5, 8, False)
    if decoded is None:
        raise ValueError("Error converting from bech32 words")

    return hrp, bytes(decoded)

def is_valid_address(addr: Optional[str], expected_prefix: Optional[str] = None) -> bool:
    if not addr:
        return False
    try:
        hrp, _ = decode_address(addr)
        if expected_prefix and hrp != expected_prefix:
            return False
        return True
    except ValueError:
        return False

def is_zero_address(addr: Optional[str]) -> bool:
    """True for empty identities and the all-zero payload under any prefix."""
    if not addr:
        return True
    try:
        _, payload = decode_address(addr)
    except ValueError:
        return False
    return payload == b"\x00" * len(payload)

ZERO_ADDRESS = address_from_bytes(b"\x00" * 20)
