"""
Persisted Records - Namespaced JSON key/value records on top of a StorageInterface.

Each owner (chat store, auth session) reads and writes only its own record,
so clearing one never touches the other.
"""

import json
import logging
from typing import Any, Dict, Optional

from .interface import StorageInterface

logger = logging.getLogger(__name__)

RECORD_VERSION = 0


class PersistedRecordStore:
    """
    Durable key/value storage for client state.
    Records are stored as ``records/<name>.json`` with a ``{"state", "version"}`` envelope.
    """

    def __init__(self, storage: StorageInterface, records_dir: str = "records"):
        self.storage = storage
        self.records_dir = records_dir

    def _get_record_path(self, name: str) -> str:
        if not name or "/" in name or name.startswith("."):
            raise ValueError(f"Invalid record name: {name!r}")
        return f"{self.records_dir}/{name}.json"

    async def load_record(self, name: str) -> Optional[Dict[str, Any]]:
        """
        Load a record's state.

        Returns:
            The stored state dict, or None when missing or unreadable
        """
        content = await self.storage.load(self._get_record_path(name))
        if content is None:
            return None

        try:
            envelope = json.loads(content.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Discarding unreadable record {name}: {e}")
            return None

        if not isinstance(envelope, dict) or not isinstance(envelope.get("state"), dict):
            logger.warning(f"Discarding malformed record {name}")
            return None

        if envelope.get("version", RECORD_VERSION) != RECORD_VERSION:
            logger.warning(
                f"Discarding record {name} with unsupported version {envelope.get('version')}"
            )
            return None

        return envelope["state"]

    async def save_record(self, name: str, state: Dict[str, Any]) -> bool:
        content = json.dumps(
            {"state": state, "version": RECORD_VERSION},
            ensure_ascii=False,
            default=str,
        )
        saved = await self.storage.save(self._get_record_path(name), content)
        if saved:
            logger.debug(f"Record {name} saved ({len(content)} bytes)")
        return saved

    async def clear_record(self, name: str) -> bool:
        return await self.storage.delete(self._get_record_path(name))

    async def list_records(self) -> list:
        files = await self.storage.list(self.records_dir, pattern="*.json")
        return [f.rsplit("/", 1)[-1][:-len(".json")] for f in files]
