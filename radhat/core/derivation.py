"""Deterministic deposit address derivation (CREATE2).

The address a forwarder will occupy is known before anything is deployed:

    salt'   = keccak256(user_salt ‖ requester)
    address = keccak256(0xff ‖ factory ‖ salt' ‖ content_hash)[12:]

``user_salt`` itself is derived from the requester and the store nonce:

    user_salt = keccak256(requester ‖ uint64_be(nonce))

Namespacing by requester means two requesters that happen to use the same
raw user salt never collide. Every function here is pure; the only failure
mode is a malformed fixed-length input, reported as ``ValidationError``.
"""

from __future__ import annotations

from web3 import Web3

from radhat.core.errors import ValidationError

ADDRESS_LENGTH = 20
BYTES32_LENGTH = 32
CREATE2_PREFIX = b"\xff"
ZERO_ADDRESS = "0x" + "00" * ADDRESS_LENGTH


def keccak256(data: bytes) -> bytes:
    return bytes(Web3.keccak(primitive=data))


# ── Parsing / formatting ─────────────────────────────────────────────────────


def _parse_fixed(value: str | bytes, length: int, label: str) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str):
        text = value.strip()
        if text[:2] in ("0x", "0X"):
            text = text[2:]
        try:
            raw = bytes.fromhex(text)
        except ValueError:
            raise ValidationError(f"invalid {label}: not hex: {value!r}") from None
    else:
        raise ValidationError(f"invalid {label}: unsupported type {type(value).__name__}")

    if len(raw) != length:
        raise ValidationError(f"invalid {label}: expected {length} bytes, got {len(raw)}")
    return raw


def parse_address(value: str | bytes) -> bytes:
    """Parse a 20-byte address from hex (with or without 0x) or raw bytes."""
    return _parse_fixed(value, ADDRESS_LENGTH, "address")


def parse_bytes32(value: str | bytes) -> bytes:
    """Parse a 32-byte word from hex (with or without 0x) or raw bytes."""
    return _parse_fixed(value, BYTES32_LENGTH, "bytes32")


def format_address(value: str | bytes) -> str:
    """Return the EIP-55 checksummed form of an address."""
    return Web3.to_checksum_address(parse_address(value))


def format_bytes32(value: bytes) -> str:
    return "0x" + parse_bytes32(value).hex()


def is_zero_address(value: str | bytes) -> bool:
    return parse_address(value) == b"\x00" * ADDRESS_LENGTH


# ── Derivation ───────────────────────────────────────────────────────────────


def generate_user_salt(requester: str | bytes, nonce: int) -> bytes:
    """user_salt = keccak256(requester ‖ uint64_be(nonce))."""
    if nonce < 0 or nonce >= 2**64:
        raise ValidationError(f"nonce out of uint64 range: {nonce}")
    return keccak256(parse_address(requester) + nonce.to_bytes(8, "big"))


def derive_salt(user_salt: str | bytes, requester: str | bytes) -> bytes:
    """salt' = keccak256(user_salt ‖ requester)."""
    return keccak256(parse_bytes32(user_salt) + parse_address(requester))


def compute_address(factory: str | bytes, salt: str | bytes, content_hash: str | bytes) -> str:
    """Return the CREATE2 address for an already-namespaced salt."""
    digest = keccak256(
        CREATE2_PREFIX
        + parse_address(factory)
        + parse_bytes32(salt)
        + parse_bytes32(content_hash)
    )
    return Web3.to_checksum_address(digest[12:])


def compute_deposit_address(
    factory: str | bytes,
    content_hash: str | bytes,
    requester: str | bytes,
    nonce: int,
) -> tuple[str, bytes, bytes]:
    """Derive ``(address, user_salt, salt')`` for a requester's nth deposit."""
    user_salt = generate_user_salt(requester, nonce)
    salt = derive_salt(user_salt, requester)
    return compute_address(factory, salt, content_hash), user_salt, salt
