"""
Cryptographic Hashing Utilities — SHA-256 audit hashing and Paynow SHA-512 signatures.
"""
import hashlib
import hmac
import json
from typing import Iterable, Mapping


def generate_hash(data: dict) -> str:
    """Generate a SHA-256 hash of a dictionary (deterministic, sorted keys)."""
    canonical = json.dumps(data, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(canonical).hexdigest()


def generate_chain_hash(current_data: dict, previous_hash: str = "") -> str:
    """Generate a chain hash: SHA-256(previous_hash + current_payload).
    Creates a tamper-evident linked chain for the audit trail.
    """
    current_hash = generate_hash(current_data)
    chain_input = f"{previous_hash}{current_hash}".encode("utf-8")
    return hashlib.sha256(chain_input).hexdigest()


def paynow_hash(values: Mapping[str, str], field_order: Iterable[str], integration_key: str) -> str:
    """Paynow message hash: uppercase hex SHA-512 of the ordered field values plus the key."""
    concat = "".join(str(values.get(field) or "") for field in field_order)
    concat += integration_key
    return hashlib.sha512(concat.encode("utf-8")).hexdigest().upper()


def hashes_match(expected: str, received: str) -> bool:
    """Constant-time, case-insensitive comparison of two hex digests."""
    return hmac.compare_digest(expected.upper(), (received or "").upper())
