from __future__ import annotations

"""Shared-passcode gate for the interactive tools.

The comparison is pluggable (``CredentialValidator``) and the "authenticated"
flag lives in a small key/value store under ``AUTH_STORAGE_KEY``. There is no
expiry: once a passcode was accepted the flag stays until ``logout()``.

Env vars:
- INSTRUMENTATOR_PASSCODE_SHA256 (hex digest; preferred)
- INSTRUMENTATOR_PASSCODE (plain value)
- INSTRUMENTATOR_STATE_PATH (default ~/.instrumentator/state.json)
"""

import hashlib
import json
import logging
import os
import secrets
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from threading import RLock
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)

AUTH_STORAGE_KEY = "instrumentator_auth"
DEFAULT_STATE_PATH = Path.home() / ".instrumentator" / "state.json"


class CredentialValidator(Protocol):
    def validate(self, secret: str) -> bool: ...


class StaticPasscodeValidator:
    def __init__(self, passcode: str) -> None:
        self._passcode = passcode

    def validate(self, secret: str) -> bool:
        return secrets.compare_digest((secret or "").encode("utf-8"), self._passcode.encode("utf-8"))


class HashedPasscodeValidator:
    def __init__(self, sha256_hex: str) -> None:
        self._digest = sha256_hex.strip().lower()

    def validate(self, secret: str) -> bool:
        candidate = hashlib.sha256((secret or "").encode("utf-8")).hexdigest()
        return secrets.compare_digest(candidate, self._digest)


def validator_from_env() -> Optional[CredentialValidator]:
    """Return the configured validator, or None when no passcode is set."""

    digest = os.getenv("INSTRUMENTATOR_PASSCODE_SHA256")
    if digest and digest.strip():
        return HashedPasscodeValidator(digest)
    passcode = os.getenv("INSTRUMENTATOR_PASSCODE")
    if passcode:
        return StaticPasscodeValidator(passcode)
    return None


class AuthStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class InMemoryAuthStorage:
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileAuthStorage:
    """String values kept in one JSON object on disk."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path or os.getenv("INSTRUMENTATOR_STATE_PATH") or DEFAULT_STATE_PATH)
        self._lock = RLock()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable state file %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._load().get(key)
            return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if data.pop(key, None) is not None:
                self._save(data)


@dataclass
class AuthState:
    authenticated: bool
    timestamp: int


class AuthGate:
    def __init__(self, validator: Optional[CredentialValidator], storage: AuthStorage) -> None:
        self.validator = validator
        self.storage = storage

    @property
    def enabled(self) -> bool:
        return self.validator is not None

    def load_state(self) -> Optional[AuthState]:
        raw = self.storage.get(AUTH_STORAGE_KEY)
        if not raw:
            return None
        try:
            data = json.loads(raw)
            return AuthState(authenticated=bool(data["authenticated"]), timestamp=int(data["timestamp"]))
        except (ValueError, TypeError, KeyError):
            return None

    def is_authenticated(self) -> bool:
        if not self.enabled:
            return True
        state = self.load_state()
        return bool(state and state.authenticated)

    def login(self, passcode: str) -> bool:
        if self.validator is None:
            return True
        if not self.validator.validate(passcode):
            logger.info("Passcode rejected")
            return False
        state = AuthState(authenticated=True, timestamp=int(time.time() * 1000))
        self.storage.set(AUTH_STORAGE_KEY, json.dumps(asdict(state)))
        return True

    def logout(self) -> None:
        self.storage.remove(AUTH_STORAGE_KEY)
