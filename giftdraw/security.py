from __future__ import annotations

import base64
import hashlib
import secrets

from cryptography.fernet import Fernet, InvalidToken, MultiFernet
from flask import Flask, current_app
from passlib.context import CryptContext


pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
)

CIPHER_KEY = "giftdraw.ticket_cipher"


def hash_secret(value: str) -> str:
    """Argon2 hash for verification codes and the admin password."""
    return pwd_context.hash(value)


def verify_secret(value: str, stored_hash: str) -> bool:
    return pwd_context.verify(value, stored_hash)


def generate_verification_code() -> str:
    # six digits, never starting with 0 so it survives spreadsheets and phones
    return str(100000 + secrets.randbelow(900000))


# ---------------------------------------------------------------------------
# Ticket encryption-at-rest
#
# Tickets keep the receiver id as a Fernet token so the pairing cannot be read
# from the database or admin listings. TICKET_ENC_KEYS holds comma-separated
# keys, newest first; older keys still decrypt until tokens are rotated.
# ---------------------------------------------------------------------------


def _derived_key(secret_key: str) -> bytes:
    digest = hashlib.sha256(b"giftdraw-tickets|" + secret_key.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


def init_ticket_cipher(app: Flask) -> MultiFernet:
    raw = app.config.get("TICKET_ENC_KEYS") or ""
    keys = [k.strip() for k in raw.split(",") if k.strip()]
    if keys:
        fernets = [Fernet(k.encode("utf-8")) for k in keys]
    else:
        fernets = [Fernet(_derived_key(app.config.get("SECRET_KEY") or ""))]
    cipher = MultiFernet(fernets)
    app.extensions[CIPHER_KEY] = cipher
    return cipher


def shutdown_ticket_cipher(app: Flask) -> None:
    app.extensions.pop(CIPHER_KEY, None)


def _cipher() -> MultiFernet:
    return current_app.extensions[CIPHER_KEY]


def encrypt_ticket_receiver(receiver_id: int) -> str:
    token = _cipher().encrypt(str(int(receiver_id)).encode("utf-8"))
    return token.decode("utf-8")


def decrypt_ticket_receiver(token: str) -> int:
    """Raises ValueError when the token cannot be read with any configured key."""
    try:
        raw = _cipher().decrypt(token.encode("utf-8"))
        return int(raw.decode("utf-8"))
    except (InvalidToken, ValueError, TypeError) as e:
        raise ValueError("Invalid ticket token") from e


def rotate_ticket_token(token: str) -> str:
    """Re-encrypt a token under the primary key."""
    return _cipher().rotate(token.encode("utf-8")).decode("utf-8")
