"""Client-side token storage.

TokenStore keeps two holders behind fixed keys:
  - durable: the token record, survives restarts (JSON file by default)
  - ephemeral: the in-flight PKCE verifier, lives only as long as the process

JSON file writes are atomic (temp file + rename) so a crash mid-write never
corrupts the record.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from nowplaying.auth.models.tokens import TokenSet

logger = logging.getLogger(__name__)

TOKENS_KEY = "spotify_tokens"
VERIFIER_KEY = "spotify_code_verifier"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """Process-local store, used for the verifier and as a test fake."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    def get(self, key: str) -> Any | None:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """Durable store backed by a single JSON object on disk."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def get(self, key: str) -> Any | None:
        return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def delete(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def _read(self) -> dict[str, Any]:
        try:
            with open(self.path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError:
            logger.warning(f"Ignoring unreadable token file {self.path}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
            os.replace(tmp, self.path)
        except Exception:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise


class TokenStore:
    """Typed access to the durable token record and the ephemeral verifier."""

    def __init__(
        self,
        durable: KeyValueStore | None = None,
        ephemeral: KeyValueStore | None = None,
    ) -> None:
        self.durable = durable if durable is not None else MemoryStore()
        self.ephemeral = ephemeral if ephemeral is not None else MemoryStore()

    def load_tokens(self) -> TokenSet | None:
        record = self.durable.get(TOKENS_KEY)
        if not record:
            return None
        if not isinstance(record, dict):
            logger.warning(
                f"Discarding malformed token record of type {type(record).__name__}"
            )
            self.durable.delete(TOKENS_KEY)
            return None
        try:
            return TokenSet.from_record(record)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding malformed token record: {e}")
            self.durable.delete(TOKENS_KEY)
            return None

    def save_tokens(self, tokens: TokenSet) -> None:
        self.durable.set(TOKENS_KEY, tokens.to_record())

    def clear_tokens(self) -> None:
        self.durable.delete(TOKENS_KEY)

    def load_verifier(self) -> str | None:
        return self.ephemeral.get(VERIFIER_KEY)

    def save_verifier(self, verifier: str) -> None:
        # One verifier per session: a new login replaces any pending one
        self.ephemeral.set(VERIFIER_KEY, verifier)

    def clear_verifier(self) -> None:
        self.ephemeral.delete(VERIFIER_KEY)

    def clear(self) -> None:
        self.clear_tokens()
        self.clear_verifier()
