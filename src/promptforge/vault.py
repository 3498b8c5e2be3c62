"""Local credential vault: API keys encrypted at rest with AES-GCM.

Keys are derived with PBKDF2-HMAC-SHA256 from a master password and a
per-secret random salt. By default the master password is a hash of local
environment attributes (a ``Fingerprint``), which makes the stored data
unreadable on another machine but offers no protection against anyone who
can run code as the same user. Supply an explicit ``master_password`` for a
real secret.
"""

import base64
import binascii
import getpass
import hashlib
import locale
import logging
import os
import platform
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .config import DEFAULT_KDF_ITERATIONS
from .errors import EncryptionError, LegacySecretError
from .models import SECRET_SCHEME_VERSION, EncryptedSecret, KeySummary
from .store import Store

logger = logging.getLogger(__name__)

NAMESPACE = "prompt-forge-master-key-v1"
KEY_LENGTH = 32
IV_LENGTH = 12
SALT_LENGTH = 16
KEY_ID_LENGTH = 16
DECRYPTION_ERROR_PLACEHOLDER = "[decryption error]"

API_KEY_NOT_FOUND = "API_KEY_NOT_FOUND"
DECRYPTION_FAILED = "DECRYPTION_FAILED"


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"), validate=True)


def _safe(call, default: str = "") -> str:
    try:
        return call() or default
    except (KeyError, OSError, ValueError):
        return default


@dataclass(frozen=True)
class Fingerprint:
    """Stable local attributes the default master password is derived from."""

    system: str = ""
    machine: str = ""
    node: str = ""
    user: str = ""
    locale: str = ""
    home: str = ""
    timezone_offset: int = 0
    namespace: str = NAMESPACE

    @classmethod
    def collect(cls) -> "Fingerprint":
        return cls(
            system=platform.system(),
            machine=platform.machine(),
            node=platform.node(),
            user=_safe(getpass.getuser),
            locale=_safe(lambda: locale.getlocale()[0]),
            home=_safe(lambda: str(Path.home())),
            # standard offset so the value does not change with DST
            timezone_offset=-time.timezone // 60,
        )

    def parts(self) -> List[str]:
        return [
            self.system,
            self.machine,
            self.node,
            self.user,
            self.locale,
            self.home,
            str(self.timezone_offset),
            self.namespace,
        ]

    def master_password(self) -> str:
        digest = hashlib.sha256("|".join(self.parts()).encode("utf-8")).digest()
        return _b64encode(digest)


def generate_key_id(provider_name: str, salt: bytes) -> str:
    """Identifies the derivation used for a secret without revealing the key."""
    material = f"{provider_name}:{_b64encode(salt)}".encode("utf-8")
    digest = hashlib.sha256(material).digest()
    return _b64encode(digest)[:KEY_ID_LENGTH]


def mask_api_key(api_key: str) -> str:
    if len(api_key) <= 10:
        return "*" * len(api_key)
    return f"{api_key[:3]}...{api_key[-4:]}"


def validate_api_key_format(provider_name: str, api_key: str) -> bool:
    """Basic shape check before a key is stored.

    Not a substitute for the adapter's ``validate_api_key``.
    """
    if not api_key or not isinstance(api_key, str):
        return False
    if provider_name == "openai":
        return api_key.startswith("sk-") and len(api_key) >= 20
    if provider_name == "anthropic":
        return api_key.startswith("sk-ant-") and len(api_key) >= 20
    if provider_name == "google":
        return len(api_key) >= 20
    return len(api_key) >= 10


def validate_encrypted_data(
    secret: Union[EncryptedSecret, Mapping[str, Any]],
    provider_name: Optional[str] = None,
) -> bool:
    """Checks that ``secret.key_id`` matches its provider and salt."""
    try:
        if not isinstance(secret, EncryptedSecret):
            secret = EncryptedSecret.model_validate(secret)
        if not secret.salt:
            return False
        expected = generate_key_id(
            provider_name or secret.provider_name, _b64decode(secret.salt)
        )
    except (ValueError, binascii.Error):
        return False
    return expected == secret.key_id


class Cipher:
    """AES-256-GCM with a PBKDF2-derived key.

    The key is re-derived on every call and never stored.
    """

    def __init__(self, master_password: str, iterations: int = DEFAULT_KDF_ITERATIONS):
        if not master_password:
            raise ValueError("master_password must not be empty")
        self._password = master_password.encode("utf-8")
        self.iterations = iterations

    def derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self.iterations,
        )
        return kdf.derive(self._password)

    def encrypt(
        self, provider_name: str, plaintext: str, name: Optional[str] = None
    ) -> EncryptedSecret:
        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)
        try:
            aesgcm = AESGCM(self.derive_key(salt))
            ciphertext = aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        except (ValueError, TypeError, OverflowError) as exc:
            raise EncryptionError(f"Failed to encrypt API key: {exc}") from exc
        return EncryptedSecret(
            provider_name=provider_name,
            encrypted_data=_b64encode(ciphertext),
            iv=_b64encode(iv),
            salt=_b64encode(salt),
            key_id=generate_key_id(provider_name, salt),
            scheme_version=SECRET_SCHEME_VERSION,
            name=name,
        )

    def decrypt(self, secret: EncryptedSecret) -> str:
        """Returns the plaintext key.

        Raises
        ------
        LegacySecretError
            The secret has no salt and was written by an older scheme.
        EncryptionError
            Authentication failed or the stored fields are malformed.
        """
        if not secret.salt:
            raise LegacySecretError(
                f"Stored key for {secret.provider_name} has no salt; re-enter the key"
            )
        try:
            salt = _b64decode(secret.salt)
            iv = _b64decode(secret.iv)
            ciphertext = _b64decode(secret.encrypted_data)
            plaintext = AESGCM(self.derive_key(salt)).decrypt(iv, ciphertext, None)
            return plaintext.decode("utf-8")
        except InvalidTag as exc:
            raise EncryptionError(
                f"Failed to decrypt API key for {secret.provider_name}: "
                "authentication failed"
            ) from exc
        except (ValueError, binascii.Error) as exc:
            raise EncryptionError(
                f"Failed to decrypt API key for {secret.provider_name}: {exc}"
            ) from exc


@dataclass
class KeyLookup:
    """Outcome of ``Vault.safe_get_api_key``; holds no secret on failure."""

    success: bool
    api_key: Optional[str] = field(default=None, repr=False)
    error: Optional[str] = None
    user_message: Optional[str] = None


class Vault:
    """Stores, lists and retrieves API keys through a ``Store``."""

    def __init__(
        self,
        store: Store,
        master_password: Optional[str] = None,
        iterations: int = DEFAULT_KDF_ITERATIONS,
        fingerprint: Optional[Fingerprint] = None,
    ):
        self.store = store
        if master_password is None:
            master_password = (fingerprint or Fingerprint.collect()).master_password()
        self.cipher = Cipher(master_password, iterations)

    def encrypt(
        self, provider_name: str, api_key: str, name: Optional[str] = None
    ) -> EncryptedSecret:
        return self.cipher.encrypt(provider_name, api_key, name)

    def decrypt(self, secret: EncryptedSecret) -> str:
        return self.cipher.decrypt(secret)

    def store_api_key(
        self, provider_name: str, api_key: str, name: Optional[str] = None
    ) -> EncryptedSecret:
        """Encrypts and saves ``api_key``, replacing the provider's existing key."""
        if not api_key or not api_key.strip():
            raise ValueError("API key must not be empty")
        secret = self.encrypt(provider_name, api_key.strip(), name)
        self.store.store_api_key(secret)
        logger.info("Stored API key for %s (%s)", provider_name, secret.key_id)
        return secret

    def get_api_key(self, provider_name: str) -> Optional[str]:
        """Decrypts the provider's key and records the use. Returns None when absent."""
        secret = self.store.get_api_key(provider_name)
        if secret is None:
            logger.debug("No API key stored for %s", provider_name)
            return None
        api_key = self.decrypt(secret)
        self.store.update_api_key_last_used(provider_name)
        return api_key

    def has_api_key(self, provider_name: str) -> bool:
        return self.store.get_api_key(provider_name) is not None

    def safe_get_api_key(self, provider_name: str) -> KeyLookup:
        try:
            api_key = self.get_api_key(provider_name)
        except EncryptionError as exc:
            logger.warning("Could not decrypt API key for %s: %s", provider_name, exc)
            return KeyLookup(
                success=False,
                error=DECRYPTION_FAILED,
                user_message=(
                    f"Could not decrypt the {provider_name.upper()} API key; "
                    "please set it again"
                ),
            )
        if api_key is None:
            return KeyLookup(
                success=False,
                error=API_KEY_NOT_FOUND,
                user_message=f"Configure an API key for {provider_name.upper()} first",
            )
        return KeyLookup(success=True, api_key=api_key)

    def get_all_api_keys(self) -> List[KeySummary]:
        """Lists every stored key masked; undecryptable keys get a placeholder."""
        summaries = []
        for secret in self.store.get_all_api_keys():
            try:
                masked = mask_api_key(self.decrypt(secret))
                failed = False
            except EncryptionError as exc:
                logger.warning(
                    "Could not decrypt API key for %s: %s", secret.provider_name, exc
                )
                masked = DECRYPTION_ERROR_PLACEHOLDER
                failed = True
            summaries.append(
                KeySummary(
                    provider_name=secret.provider_name,
                    name=secret.name,
                    masked_key=masked,
                    created_at=secret.created_at,
                    last_used=secret.last_used,
                    decryption_failed=failed,
                )
            )
        return summaries

    def stored_providers(self) -> List[str]:
        return [secret.provider_name for secret in self.store.get_all_api_keys()]

    def delete_api_key(self, provider_name: str) -> bool:
        removed = self.store.delete_api_key(provider_name)
        if removed:
            logger.info("Deleted API key for %s", provider_name)
        return removed
