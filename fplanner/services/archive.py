"""Gameweek archive on top of a blob store.

Keys are deterministic, so re-archiving a gameweek overwrites the previous
object instead of adding a second one:
- periods/{gameweek}/{artifact}.json  (cohorts, picks, bootstrap)
- players/{player_id}.json            (aggregated player ownership history)

Storage failures are logged and reported as a miss (reads) or False (writes).
Nothing here raises to the caller.
"""

import json
import logging
from typing import Any

from fplanner.services.blob_storage import BlobStore, StorageUnavailableError

logger = logging.getLogger(__name__)

ARTIFACT_COHORTS = "cohorts"
ARTIFACT_PICKS = "picks"
ARTIFACT_BOOTSTRAP = "bootstrap"


def gameweek_key(gameweek: int, artifact: str) -> str:
    return f"periods/{gameweek}/{artifact}.json"


def player_key(player_id: int) -> str:
    return f"players/{player_id}.json"


class GameweekArchive:
    """Reads and writes archived JSON documents."""

    def __init__(self, store: BlobStore):
        self.store = store

    @property
    def enabled(self) -> bool:
        return self.store.enabled

    async def _write(self, key: str, data: dict[str, Any]) -> bool:
        if not self.enabled:
            return False
        try:
            body = json.dumps(data, separators=(",", ":")).encode("utf-8")
            await self.store.put(key, body)
        except (StorageUnavailableError, TypeError, ValueError) as e:
            logger.error(f"Failed to archive {key}: {e}")
            return False
        logger.info(f"Archived {key}")
        return True

    async def _read(self, key: str) -> dict[str, Any] | None:
        if not self.enabled:
            return None
        try:
            body = await self.store.get(key)
        except StorageUnavailableError as e:
            logger.error(f"Failed to load {key}: {e}")
            return None

        if body is None:
            logger.info(f"{key} not found in archive")
            return None

        try:
            return json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"Archived {key} is not valid JSON: {e}")
            return None

    async def archive_gameweek(self, gameweek: int, artifact: str, data: dict[str, Any]) -> bool:
        """Write one artifact for a gameweek, replacing any previous copy."""
        return await self._write(gameweek_key(gameweek, artifact), data)

    async def load_gameweek(
        self, gameweek: int, artifact: str = ARTIFACT_COHORTS
    ) -> dict[str, Any] | None:
        return await self._read(gameweek_key(gameweek, artifact))

    async def has_gameweek(self, gameweek: int, artifact: str = ARTIFACT_COHORTS) -> bool:
        """Whether an artifact is archived; storage errors count as absent."""
        key = gameweek_key(gameweek, artifact)
        if not self.enabled:
            return False
        try:
            return await self.store.exists(key)
        except StorageUnavailableError as e:
            logger.error(f"Failed to check {key}: {e}")
            return False

    async def save_player_history(self, player_id: int, data: dict[str, Any]) -> bool:
        return await self._write(player_key(player_id), data)

    async def load_player_history(self, player_id: int) -> dict[str, Any] | None:
        return await self._read(player_key(player_id))
