from cemetery.utils.hashing import generate_hash, generate_chain_hash, paynow_hash, hashes_match
from cemetery.utils.validators import (
    validate_uuid, validate_amount, validate_ecocash_phone, normalize_ecocash_phone, format_money,
)

__all__ = [
    "generate_hash", "generate_chain_hash", "paynow_hash", "hashes_match",
    "validate_uuid", "validate_amount", "validate_ecocash_phone", "normalize_ecocash_phone",
    "format_money",
]
