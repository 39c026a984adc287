"""Sensitive values and their encrypted at-rest representation.

A :class:`Secret` renders as a mask in ``str()``, ``repr()`` and JSON dumps.
The only way to read the value is :meth:`Secret.reveal`.

State files never hold a secret in cleartext: :func:`encode_secrets` swaps
every secret for ``{"@secret": "<fernet token>"}`` and :func:`decode_secrets`
turns those markers back into :class:`Secret` objects.
"""

from __future__ import annotations

import base64
import functools
from collections.abc import Mapping
from typing import Any, get_args, get_origin

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import BaseModel, SecretStr

from saas_provisioner.errors import SecretEncryptionError

SECRET_MARKER = "@secret"
MASK = "**********"

_KDF_SALT = b"saas-provisioner/state/v1"
_KDF_ITERATIONS = 200_000


class Secret(SecretStr):
    """A sensitive string (API token, password, client secret)."""

    def reveal(self) -> str:
        """Return the wrapped plaintext value."""
        return self.get_secret_value()


def secret(value: str) -> Secret:
    """Wrap *value* as a :class:`Secret`."""
    return Secret(value)


@functools.lru_cache(maxsize=8)
def _derive_key(passphrase: str) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_KDF_SALT,
        iterations=_KDF_ITERATIONS,
    )
    return base64.urlsafe_b64encode(kdf.derive(passphrase.encode("utf-8")))


class SecretCipher:
    """Symmetric encryption of secret values keyed by a passphrase."""

    def __init__(self, passphrase: str | SecretStr) -> None:
        raw = passphrase.get_secret_value() if isinstance(passphrase, SecretStr) else passphrase
        if not raw:
            raise ValueError("Passphrase must not be empty")
        self._fernet = Fernet(_derive_key(raw))

    def encrypt(self, value: str) -> str:
        return self._fernet.encrypt(value.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            raise SecretEncryptionError(
                "Unable to decrypt secret value (wrong passphrase or corrupted state)"
            ) from e


def _is_marker(obj: Mapping[str, Any]) -> bool:
    return len(obj) == 1 and SECRET_MARKER in obj


def encode_secrets(obj: Any, cipher: SecretCipher | None) -> Any:
    """Return a copy of *obj* with every secret replaced by its encrypted marker.

    Raises:
        SecretEncryptionError: If *obj* holds a secret and no cipher is given.
    """
    if isinstance(obj, SecretStr):
        if cipher is None:
            raise SecretEncryptionError(
                "A passphrase is required to persist secret values "
                "(set PROVISIONER_PASSPHRASE)"
            )
        return {SECRET_MARKER: cipher.encrypt(obj.get_secret_value())}
    if isinstance(obj, BaseModel):
        return encode_secrets(obj.model_dump(), cipher)
    if isinstance(obj, Mapping):
        return {k: encode_secrets(v, cipher) for k, v in obj.items()}
    if isinstance(obj, list | tuple):
        return [encode_secrets(v, cipher) for v in obj]
    return obj


def decode_secrets(obj: Any, cipher: SecretCipher | None) -> Any:
    """Inverse of :func:`encode_secrets`."""
    if isinstance(obj, Mapping):
        if _is_marker(obj):
            if cipher is None:
                raise SecretEncryptionError(
                    "State holds encrypted secrets but no passphrase is configured"
                )
            return Secret(cipher.decrypt(obj[SECRET_MARKER]))
        return {k: decode_secrets(v, cipher) for k, v in obj.items()}
    if isinstance(obj, list):
        return [decode_secrets(v, cipher) for v in obj]
    return obj


def redact(obj: Any) -> Any:
    """Return a copy of *obj* safe for logs and terminal output.

    Secrets (live or still encrypted) render as :data:`MASK`.
    """
    if isinstance(obj, SecretStr):
        return MASK
    if isinstance(obj, BaseModel):
        return redact(obj.model_dump())
    if isinstance(obj, Mapping):
        if _is_marker(obj):
            return MASK
        return {k: redact(v) for k, v in obj.items()}
    if isinstance(obj, list | tuple):
        return [redact(v) for v in obj]
    return obj


def _annotation_holds_secrets(annotation: Any, seen: set[type]) -> bool:
    if get_origin(annotation) is None and isinstance(annotation, type):
        if issubclass(annotation, SecretStr):
            return True
        if issubclass(annotation, BaseModel):
            if annotation in seen:
                return False
            seen.add(annotation)
            return any(
                _annotation_holds_secrets(field.annotation, seen)
                for field in annotation.model_fields.values()
            )
        return False
    return any(_annotation_holds_secrets(arg, seen) for arg in get_args(annotation))


@functools.lru_cache(maxsize=None)
def model_holds_secrets(model: type[BaseModel]) -> bool:
    """True if any field of *model*, at any depth, is declared as a secret."""
    return _annotation_holds_secrets(model, set())
