"""ES256 signing of daily credential tokens."""

from __future__ import annotations

import base64
import binascii
import hashlib
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from mealpass_api.core.errors import ConfigurationError

ALGORITHM = "ES256"
_PEM_MARKER = "-----BEGIN"


@dataclass(frozen=True, slots=True)
class SigningKey:
    """Imported P-256 key pair, read-only for the duration of a run."""

    private_key: ec.EllipticCurvePrivateKey
    public_key: ec.EllipticCurvePublicKey
    key_id: str

    def public_pem(self) -> str:
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("ascii")


def load_signing_key(material: str | bytes | None) -> SigningKey:
    """Import a PKCS#8 PEM (or base64-wrapped PEM) P-256 private key."""

    if not material:
        raise ConfigurationError("Credential signing key is not configured")

    pem = _coerce_pem(material)
    try:
        private_key = serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError) as exc:
        raise ConfigurationError("Credential signing key could not be parsed") from exc

    if not isinstance(private_key, ec.EllipticCurvePrivateKey) or not isinstance(private_key.curve, ec.SECP256R1):
        raise ConfigurationError("Credential signing key must be an EC P-256 private key")

    public_key = private_key.public_key()
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    key_id = hashlib.sha256(der).hexdigest()[:16]
    return SigningKey(private_key=private_key, public_key=public_key, key_id=key_id)


def sign_credential_token(
    key: SigningKey,
    *,
    issuer: str,
    subject: str,
    token_id: str,
    service_date: date,
    issued_at: datetime,
    expires_at: datetime,
) -> str:
    claims: dict[str, Any] = {
        "iss": issuer,
        "sub": subject,
        "jti": token_id,
        "service_date": service_date.isoformat(),
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(claims, key.private_key, algorithm=ALGORITHM, headers={"kid": key.key_id})


def decode_credential_token(
    token: str,
    public_key: ec.EllipticCurvePublicKey,
    *,
    issuer: str,
    verify_exp: bool = True,
    verify_iat: bool = True,
) -> dict[str, Any]:
    """Verify signature and issuer; raises ``jwt.InvalidTokenError`` subclasses."""

    return jwt.decode(
        token,
        public_key,
        algorithms=[ALGORITHM],
        issuer=issuer,
        options={
            "require": ["iss", "sub", "jti", "iat", "exp"],
            "verify_exp": verify_exp,
            "verify_iat": verify_iat,
        },
    )


def _coerce_pem(material: str | bytes) -> bytes:
    raw = material.encode("utf-8") if isinstance(material, str) else material
    raw = raw.strip()
    if _PEM_MARKER.encode("ascii") in raw:
        return raw
    try:
        decoded = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ConfigurationError("Credential signing key is neither PEM nor base64-encoded PEM") from exc
    if _PEM_MARKER.encode("ascii") not in decoded:
        raise ConfigurationError("Decoded credential signing key is not PEM")
    return decoded.strip()


__all__ = ["ALGORITHM", "SigningKey", "decode_credential_token", "load_signing_key", "sign_credential_token"]
