"""Encrypted storage of user code slots.

The store maps a slot number to a human readable label and the PIN,
encrypted with AES-256-GCM. It is a local record of intent: it never talks
to a lock, so it can disagree with what the lock actually holds.

File format::

    {"codes": [{"slot": 3, "label": "Guest", "secret": "<hex>"}]}

``secret`` is hex(nonce || tag || ciphertext) and decrypts with the key
alone.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Mapping

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from const import CODE_ENCRYPTION_KEY_ENV, MIN_SLOT, PIN_PATTERN
from errors import ConfigError, InvalidFormatError

_LOGGER = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 16
TAG_SIZE = 16


def validate_pin(pin: str) -> str:
    """Raise InvalidFormatError unless the PIN is 4 to 8 digits."""
    if not isinstance(pin, str) or not PIN_PATTERN.fullmatch(pin):
        raise InvalidFormatError("PIN must be 4 to 8 digits")
    return pin


def load_encryption_key(environ: Mapping[str, str] | None = None) -> tuple[bytes, bool]:
    """Load the code encryption key from the environment.

    Returns ``(key, generated)``. When the variable is absent a fresh key is
    generated; the caller must tell the operator to persist it, because PINs
    stored under a lost key cannot be recovered.
    """
    env = os.environ if environ is None else environ
    raw = env.get(CODE_ENCRYPTION_KEY_ENV, "").strip()
    if not raw:
        _LOGGER.warning(
            "%s is not set, generated a new key for this session",
            CODE_ENCRYPTION_KEY_ENV,
        )
        return AESGCM.generate_key(bit_length=256), True
    try:
        key = bytes.fromhex(raw)
    except ValueError as err:
        raise ConfigError(f"{CODE_ENCRYPTION_KEY_ENV} must be hex") from err
    if len(key) != KEY_SIZE:
        raise ConfigError(
            f"{CODE_ENCRYPTION_KEY_ENV} must be {KEY_SIZE * 2} hex characters"
        )
    return key, False


class CodeCipher:
    """AES-256-GCM encryption of PINs with a fresh nonce per call."""

    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise ConfigError(f"Code encryption key must be {KEY_SIZE} bytes")
        self._aead = AESGCM(key)

    def encrypt(self, pin: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, pin.encode("utf-8"), None)
        # AESGCM appends the tag; the stored layout puts it before the payload
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return (nonce + tag + ciphertext).hex()

    def decrypt(self, blob: str) -> str:
        try:
            raw = bytes.fromhex(blob)
        except (TypeError, ValueError) as err:
            raise InvalidFormatError("Stored secret is not hex") from err
        if len(raw) <= NONCE_SIZE + TAG_SIZE:
            raise InvalidFormatError("Stored secret is truncated")
        nonce = raw[:NONCE_SIZE]
        tag = raw[NONCE_SIZE:NONCE_SIZE + TAG_SIZE]
        ciphertext = raw[NONCE_SIZE + TAG_SIZE:]
        try:
            plain = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as err:
            raise InvalidFormatError(
                "Stored secret failed authentication (wrong key or tampered)"
            ) from err
        return plain.decode("utf-8")


@dataclass(frozen=True)
class StoredCode:
    """A decrypted code slot record."""

    slot: int
    label: str
    pin: str


class CodeStore:
    """Slot to label/PIN store backed by a JSON file."""

    def __init__(self, path: str, cipher: CodeCipher):
        self._path = path
        self._cipher = cipher

    @property
    def path(self) -> str:
        return self._path

    def _load(self) -> list[dict]:
        if not os.path.exists(self._path):
            return []
        try:
            with open(self._path) as f:
                data = json.load(f)
        except json.JSONDecodeError as err:
            raise ConfigError(f"Code store {self._path} is not valid JSON") from err
        records = []
        for entry in data.get("codes", []):
            # Older files used name/pin instead of label/secret
            records.append({
                "slot": int(entry["slot"]),
                "label": entry.get("label", entry.get("name", "")),
                "secret": entry.get("secret", entry.get("pin", "")),
            })
        return records

    def _write(self, records: list[dict]) -> None:
        """Write the whole store atomically."""
        directory = os.path.dirname(self._path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self._path}.tmp"
        with open(tmp_path, "w") as f:
            json.dump({"codes": records}, f, indent=2)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self._path)

    def save(self, slot: int, label: str, pin: str) -> None:
        """Store a code, replacing any record for the slot."""
        validate_pin(pin)
        if slot < MIN_SLOT:
            raise InvalidFormatError(f"Slot must be >= {MIN_SLOT}")
        records = [r for r in self._load() if r["slot"] != slot]
        records.append({
            "slot": slot,
            "label": label,
            "secret": self._cipher.encrypt(pin),
        })
        records.sort(key=lambda r: r["slot"])
        self._write(records)
        _LOGGER.info("Stored code for slot %d (%s)", slot, label)

    def get(self, slot: int) -> StoredCode | None:
        """Decrypt and return the record for a slot."""
        for record in self._load():
            if record["slot"] == slot:
                pin = self._cipher.decrypt(record["secret"])
                return StoredCode(slot, record["label"], pin)
        return None

    def delete(self, slot: int) -> bool:
        """Remove a slot. Returns False when it was not stored."""
        records = self._load()
        remaining = [r for r in records if r["slot"] != slot]
        if len(remaining) == len(records):
            return False
        self._write(remaining)
        _LOGGER.info("Removed stored code for slot %d", slot)
        return True

    def list_all(self) -> list[dict]:
        """Slots and labels only. PINs are never decrypted here."""
        return [{"slot": r["slot"], "label": r["label"]} for r in self._load()]

    def slots_with_pin(self, pin: str, exclude_slot: int | None = None) -> list[int]:
        """Slots whose stored PIN equals ``pin``.

        Records that fail to decrypt are skipped with a warning.
        """
        matches = []
        for record in self._load():
            if record["slot"] == exclude_slot:
                continue
            try:
                stored = self._cipher.decrypt(record["secret"])
            except InvalidFormatError as err:
                _LOGGER.warning("Skipping slot %d: %s", record["slot"], err)
                continue
            if stored == pin:
                matches.append(record["slot"])
        return matches
