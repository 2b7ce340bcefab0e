"""Credential minting, signing, and short-code helpers."""

from .minter import CredentialMinter, MintOutcome, MintResult
from .short_code import ALPHABET, format_short_code, generate_short_code, is_valid_short_code, normalize_short_code
from .signing import SigningKey, decode_credential_token, load_signing_key, sign_credential_token

__all__ = [
    "ALPHABET",
    "CredentialMinter",
    "MintOutcome",
    "MintResult",
    "SigningKey",
    "decode_credential_token",
    "format_short_code",
    "generate_short_code",
    "is_valid_short_code",
    "load_signing_key",
    "normalize_short_code",
    "sign_credential_token",
]
