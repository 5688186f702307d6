from __future__ import annotations

import base64
import logging
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

# Fixed salt: the derived key must be reproducible from the same SSH key
SALT = b"remote-exec-v1-secret-salt"
KEY_CANDIDATES = ("id_ed25519", "id_ecdsa", "id_rsa")
# base64 of a Fernet token's "gAAAAA" prefix
TOKEN_PREFIX = "Z0FBQUFB"


def find_ssh_key_for_encryption() -> Path | None:
    """Return the first private key under ~/.ssh usable as key material."""
    ssh_dir = Path.home() / ".ssh"
    if not ssh_dir.exists():
        return None
    for key_name in KEY_CANDIDATES:
        key_path = ssh_dir / key_name
        if key_path.exists():
            return key_path
    return None


def derive_encryption_key(ssh_key_path: Path) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=SALT,
        iterations=100000,
    )
    return base64.urlsafe_b64encode(kdf.derive(ssh_key_path.read_bytes()))


def get_fernet_cipher() -> Fernet | None:
    ssh_key = find_ssh_key_for_encryption()
    if not ssh_key:
        return None
    try:
        return Fernet(derive_encryption_key(ssh_key))
    except OSError as e:
        logger.error("Cannot read %s for encryption: %s", ssh_key, e)
        return None


def encrypt_secret(secret: str) -> str:
    """Encrypt a stored secret. Returns a base64 string."""
    cipher = get_fernet_cipher()
    if not cipher:
        raise RuntimeError("Failed to initialize encryption")
    return base64.b64encode(cipher.encrypt(secret.encode("utf-8"))).decode("ascii")


def decrypt_secret(token: str) -> str:
    cipher = get_fernet_cipher()
    if not cipher:
        raise RuntimeError("Failed to initialize encryption")
    try:
        return cipher.decrypt(base64.b64decode(token.encode("ascii"))).decode("utf-8")
    except (InvalidToken, ValueError) as e:
        raise ValueError(f"cannot decrypt secret: {e}") from e


def is_encrypted(value: str | None) -> bool:
    """Heuristic: does ``value`` look like an encrypt_secret() token."""
    return bool(value) and len(value) > 40 and value.startswith(TOKEN_PREFIX)
