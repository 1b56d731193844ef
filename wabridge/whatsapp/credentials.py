"""
Multi-file credential store.

Credential material is persisted as one JSON file per key inside a single
directory (`creds.json` for the main record, one file per signal key). Writes
go through a temporary file and `os.replace`, so a file on disk always holds
the last successfully saved value.
"""

import asyncio
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional
from urllib.parse import quote, unquote

from .errors import CredentialCorruption


logger = logging.getLogger("wabridge.credentials")

MAIN_KEY = "creds"


def _file_name(key: str) -> str:
    """Map a credential key to a safe, reversible file name."""
    return quote(key, safe="-_") + ".json"


def _key_name(file_name: str) -> str:
    return unquote(file_name[:-len(".json")])


class MultiFileCredentialStore:
    """
    Credential store backed by a directory of JSON files.

    All disk work runs in a worker thread so the event loop is never blocked.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    async def load(self) -> Optional[dict]:
        """
        Load all persisted credentials.

        Returns:
            Mapping of key -> value, or None if no credentials are stored

        Raises:
            CredentialCorruption: If a stored file cannot be decoded
        """
        return await asyncio.to_thread(self._load_sync)

    async def persist(self, credentials: dict) -> None:
        """
        Persist credential keys. A value of None removes that key.

        Args:
            credentials: Mapping of key -> JSON-serializable value
        """
        await asyncio.to_thread(self._persist_sync, credentials)

    async def erase(self) -> None:
        """Delete every stored credential file."""
        await asyncio.to_thread(self._erase_sync)

    def exists(self) -> bool:
        return (self.directory / _file_name(MAIN_KEY)).is_file()

    # =========================================================================
    # Private Implementation
    # =========================================================================

    def _load_sync(self) -> Optional[dict]:
        if not self.exists():
            return None

        credentials = {}
        for path in sorted(self.directory.glob("*.json")):
            if path.name.startswith("."):
                continue
            try:
                credentials[_key_name(path.name)] = json.loads(path.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise CredentialCorruption(f"Unreadable credential file {path.name}: {e}") from e

        if not isinstance(credentials.get(MAIN_KEY), dict):
            raise CredentialCorruption(f"{_file_name(MAIN_KEY)} does not hold an object")

        logger.debug(f"Loaded {len(credentials)} credential file(s) from {self.directory}")
        return credentials

    def _persist_sync(self, credentials: dict) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        for key, value in credentials.items():
            path = self.directory / _file_name(key)
            if value is None:
                path.unlink(missing_ok=True)
                continue
            self._write_atomic(path, value)
        logger.debug(f"Persisted {len(credentials)} credential key(s)")

    def _write_atomic(self, path: Path, value) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(value, fh)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _erase_sync(self) -> None:
        if self.directory.exists():
            shutil.rmtree(self.directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        logger.warning(f"Erased all credentials in {self.directory}")
