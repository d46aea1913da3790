# backend/portal/services/client_codes.py
"""
Client code primitives.

Codes are 8 characters from an alphabet without look-alike glyphs
(no 0/O, no 1/I), generated with a cryptographic random source.
"""
import hashlib
import hmac
import secrets

CLIENT_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CLIENT_CODE_LENGTH = 8


def generate_client_code() -> str:
    # Bearer credential: must come from the CSPRNG, never random.random
    return "".join(secrets.choice(CLIENT_CODE_ALPHABET) for _ in range(CLIENT_CODE_LENGTH))


def normalize_client_code(raw: str | None) -> str:
    return (raw or "").strip().upper()


def is_well_formed(normalized: str) -> bool:
    # Format gate only; the lookup is the security boundary
    return len(normalized) >= CLIENT_CODE_LENGTH


def hash_client_code(normalized: str, secret: str) -> str:
    # HMAC-SHA256 hex digest (64 chars), keyed so the 33^8 space can't be precomputed
    return hmac.new(secret.encode("utf-8"), normalized.encode("utf-8"), hashlib.sha256).hexdigest()
