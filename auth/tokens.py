"""
auth/tokens.py -- Secret generation, hashing, and encryption utilities.

Security design decisions:
  API keys: "ak_" + secrets.token_urlsafe(32) gives 256 bits of entropy --
       brute-force is computationally infeasible. We store
       HMAC-SHA256(SECRET_KEY, salt + raw_key) with a random per-key salt.
       bcrypt's intentional slowness is unnecessary for high-entropy keys and
       would make every authenticated request pay its cost factor.
       Comparison uses hmac.compare_digest so the check runs in constant time.

  Client secrets: bcrypt. A confidential client's secret is chosen by a human
       and may be low-entropy, which is exactly what bcrypt's cost factor is
       for. The _DUMMY_CLIENT_HASH constant enables timing equalization in
       ClientRegistry.verify_secret() so response time does not reveal whether
       a client_id exists.

  Provider secrets: Fernet (AES-128-CBC + HMAC-SHA256). An external provider's
       client secret must be recoverable to talk to the provider, so it is
       encrypted rather than hashed. The Fernet key is derived from SECRET_KEY
       with PBKDF2-SHA256; rotating SECRET_KEY makes stored provider secrets
       unreadable and they must be re-entered.

  SECRET_KEY: sourced from core.config.get_settings(). The Settings class
       validates the key at startup: dev mode (DEBUG=true) auto-generates a
       random key with a warning; production mode refuses to start without one.

Layer rule: no imports from api/, audit/, or registry/. Import from core/
is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import re
import secrets

import bcrypt
from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from core.config import get_settings

logger = logging.getLogger("idcore.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

API_KEY_PREFIX = "ak_"
KEY_PREFIX_LENGTH = 12  # chars of the raw key stored in the clear

_API_KEY_RE = re.compile(r"^ak_[A-Za-z0-9_\-]{43}$")

# ---------------------------------------------------------------------------
# API key generation and hashing
# ---------------------------------------------------------------------------


def generate_api_key() -> str:
    """Generate a new API key in the format: ak_<43 url-safe chars>."""
    return f"{API_KEY_PREFIX}{secrets.token_urlsafe(32)}"


def is_well_formed_api_key(raw_key: str) -> bool:
    """Cheap shape check run before any database access."""
    return bool(raw_key) and _API_KEY_RE.match(raw_key) is not None


def key_prefix_of(raw_key: str) -> str:
    return raw_key[:KEY_PREFIX_LENGTH]


def new_salt() -> str:
    return secrets.token_hex(16)


def hash_api_key(raw_key: str, salt: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, salt + raw_key) as a hex string.

    Using SECRET_KEY as the HMAC key means an attacker who obtains the DB
    cannot test guesses without also knowing SECRET_KEY.
    """
    return hmac.new(
        _settings.secret_key.encode(),
        (salt + raw_key).encode(),
        hashlib.sha256,
    ).hexdigest()


def api_key_matches(raw_key: str, salt: str, expected_hash: str) -> bool:
    """Constant-time comparison of a presented key against a stored hash."""
    return hmac.compare_digest(hash_api_key(raw_key, salt), expected_hash)


# Timing equalization for unknown prefixes. verify() always runs at least one
# HMAC + compare_digest so an unknown prefix costs the same as a wrong secret.
_DUMMY_SALT: str = new_salt()
_DUMMY_KEY_HASH: str = hash_api_key(f"{API_KEY_PREFIX}timing_dummy", _DUMMY_SALT)


def equalize_api_key_timing(raw_key: str) -> None:
    api_key_matches(raw_key, _DUMMY_SALT, _DUMMY_KEY_HASH)


# ---------------------------------------------------------------------------
# Client secret hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


# bcrypt reads at most 72 bytes of input; bcrypt>=5 raises ValueError beyond it.
CLIENT_SECRET_MAX_BYTES = 72


def client_secret_fits(plain: str) -> bool:
    """True if the UTF-8 encoding of plain is within bcrypt's input limit."""
    return len(plain.encode("utf-8")) <= CLIENT_SECRET_MAX_BYTES


def hash_client_secret(plain: str) -> str:
    """Return a bcrypt hash of a confidential client's secret.

    Callers check client_secret_fits() first. A character cap alone is not
    enough: 72 non-ASCII characters encode to more than 72 bytes.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_client_secret(plain: str, hashed: str) -> bool:
    """Return True if the plaintext secret matches the bcrypt hash.

    A malformed stored hash or an over-long input makes bcrypt raise
    ValueError; both mean "does not match".
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first verification is not measurably
# slower than subsequent ones.
_DUMMY_CLIENT_HASH: str = hash_client_secret("idcore_timing_dummy")


def equalize_client_secret_timing(plain: str) -> None:
    verify_client_secret(plain, _DUMMY_CLIENT_HASH)


# ---------------------------------------------------------------------------
# Provider secret encryption (Fernet)
# ---------------------------------------------------------------------------

_ENCRYPTION_SALT = b"idcore-provider-secrets-v1"


def _derive_fernet_key(secret_key: str) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_ENCRYPTION_SALT,
        iterations=100_000,
    )
    return base64.urlsafe_b64encode(kdf.derive(secret_key.encode()))


_fernet = Fernet(_derive_fernet_key(_settings.secret_key))


def encrypt_secret(plain: str) -> str:
    """Encrypt a provider client secret for storage."""
    return _fernet.encrypt(plain.encode("utf-8")).decode("ascii")


def decrypt_secret(token: str) -> str:
    """Decrypt a stored provider client secret.

    Raises:
        cryptography.fernet.InvalidToken if the ciphertext was produced under a
        different SECRET_KEY or has been tampered with.
    """
    return _fernet.decrypt(token.encode("ascii")).decode("utf-8")
