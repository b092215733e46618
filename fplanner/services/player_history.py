"""Per-player ownership history across archived gameweeks.

Combines the archived cohort picks (how many sampled squads owned/captained a
player) with the player's element-summary history (price, points) and saves
one document per player under ``players/{id}.json``.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx

from fplanner.services.archive import ARTIFACT_BOOTSTRAP, ARTIFACT_PICKS, GameweekArchive
from fplanner.services.fpl_client import FplApiClient, PlayerHistory, UpstreamUnavailableError
from fplanner.services.gameweeks import GameweekOracle, validate_gameweek

logger = logging.getLogger(__name__)

FORM_LOOKBACK = 5
HISTORY_FETCH_CONCURRENCY = 10


@dataclass(slots=True)
class AggregationResult:
    """Summary of one aggregation run."""

    from_gameweek: int
    to_gameweek: int
    total_players: int
    aggregated: int
    skipped: int
    completed_at: str


def _percent(count: int, sample_size: int) -> float | None:
    if not sample_size:
        return None
    return round(count / sample_size * 100, 1)


def rolling_form(history: list[PlayerHistory]) -> dict[int, float]:
    """Average points over the last FORM_LOOKBACK rounds, per round."""
    ordered = sorted(history, key=lambda h: h.gameweek)
    form: dict[int, float] = {}
    for index, item in enumerate(ordered):
        window = ordered[max(0, index - FORM_LOOKBACK + 1) : index + 1]
        form[item.gameweek] = round(sum(h.total_points for h in window) / len(window), 1)
    return form


def cumulative_points(history: list[PlayerHistory]) -> dict[int, int]:
    total = 0
    result: dict[int, int] = {}
    for item in sorted(history, key=lambda h: h.gameweek):
        total += item.total_points
        result[item.gameweek] = total
    return result


def build_player_gameweeks(
    player_id: int,
    archived: dict[int, dict[str, Any]],
    history: list[PlayerHistory],
) -> list[dict[str, Any]]:
    """Per-gameweek ownership records for one player.

    Args:
        player_id: FPL element id
        archived: gameweek -> {"picks": ..., "bootstrap": ...} archive documents
        history: Player's element-summary history (may be empty)
    """
    by_round = {h.gameweek: h for h in history}
    form = rolling_form(history)
    totals = cumulative_points(history)

    gameweeks = []
    for gameweek in sorted(archived):
        picks = archived[gameweek].get("picks") or {}
        record: dict[str, Any] = {"gameweek": gameweek}

        for band_key, band in picks.get("buckets", {}).items():
            sample_size = band.get("sample_size", 0)
            player = next(
                (p for p in band.get("players", []) if p.get("element") == player_id), None
            )
            if player is None:
                continue
            record[band_key] = {
                "ownership": player.get("ownership", 0),
                "ownership_percent": _percent(player.get("ownership", 0), sample_size),
                "captain_count": player.get("captain_count", 0),
                "captain_percent": _percent(player.get("captain_count", 0), sample_size),
            }

        entry = by_round.get(gameweek)
        if entry is not None:
            record["price"] = entry.value
            record["gw_points"] = entry.total_points
            record["total_points"] = totals[gameweek]
            record["form"] = form[gameweek]

        bootstrap = archived[gameweek].get("bootstrap") or {}
        element = next(
            (e for e in bootstrap.get("elements", []) if e.get("id") == player_id), None
        )
        if element is not None and element.get("selected_by_percent") is not None:
            record["overall_ownership"] = element["selected_by_percent"]

        # Only keep gameweeks with at least some data
        if len(record) > 1:
            gameweeks.append(record)

    return gameweeks


class PlayerHistoryAggregator:
    """Builds and reads aggregated player ownership history."""

    def __init__(
        self,
        client: FplApiClient,
        archive: GameweekArchive,
        oracle: GameweekOracle,
        concurrency: int = HISTORY_FETCH_CONCURRENCY,
    ):
        self.client = client
        self.archive = archive
        self.oracle = oracle
        self.concurrency = concurrency

    async def _load_archived(self, from_gw: int, to_gw: int) -> dict[int, dict[str, Any]]:
        archived: dict[int, dict[str, Any]] = {}
        for gameweek in range(from_gw, to_gw + 1):
            picks, bootstrap = await asyncio.gather(
                self.archive.load_gameweek(gameweek, ARTIFACT_PICKS),
                self.archive.load_gameweek(gameweek, ARTIFACT_BOOTSTRAP),
            )
            if not picks or not picks.get("buckets"):
                logger.warning(f"GW{gameweek}: no archived picks, skipping")
                continue
            archived[gameweek] = {"picks": picks, "bootstrap": bootstrap}
        return archived

    async def _fetch_histories(self, player_ids: list[int]) -> dict[int, list[PlayerHistory]]:
        semaphore = asyncio.Semaphore(self.concurrency)
        histories: dict[int, list[PlayerHistory]] = {}

        async def fetch(player_id: int) -> None:
            async with semaphore:
                try:
                    histories[player_id] = await self.client.get_player_history(player_id)
                except (UpstreamUnavailableError, httpx.HTTPError, ValueError) as e:
                    logger.warning(f"Failed to fetch history for player {player_id}: {e}")

        await asyncio.gather(*(fetch(pid) for pid in player_ids))
        return histories

    async def aggregate(
        self, from_gw: int = 1, to_gw: int | None = None
    ) -> AggregationResult:
        """Aggregate every player seen in archived picks between two gameweeks."""
        validate_gameweek(from_gw)
        to_gw = validate_gameweek(to_gw) if to_gw is not None else self.oracle.latest_finished()
        logger.info(f"Starting player history aggregation for GW{from_gw} to GW{to_gw}")

        archived = await self._load_archived(from_gw, to_gw)
        player_ids = sorted(
            {
                p["element"]
                for gw_data in archived.values()
                for band in gw_data["picks"].get("buckets", {}).values()
                for p in band.get("players", [])
                if p.get("element")
            }
        )
        logger.info(f"Found {len(player_ids)} players across {len(archived)} gameweeks")

        histories = await self._fetch_histories(player_ids)

        aggregated = skipped = 0
        for player_id in player_ids:
            gameweeks = build_player_gameweeks(player_id, archived, histories.get(player_id, []))
            if not gameweeks:
                skipped += 1
                continue

            saved = await self.archive.save_player_history(
                player_id,
                {
                    "player_id": player_id,
                    "last_updated": datetime.now(UTC).isoformat(),
                    "gameweeks": gameweeks,
                },
            )
            if saved:
                aggregated += 1
            else:
                skipped += 1

        logger.info(f"Player history aggregation complete: {aggregated} saved, {skipped} skipped")
        return AggregationResult(
            from_gameweek=from_gw,
            to_gameweek=to_gw,
            total_players=len(player_ids),
            aggregated=aggregated,
            skipped=skipped,
            completed_at=datetime.now(UTC).isoformat(),
        )

    async def load(self, player_id: int) -> dict[str, Any] | None:
        return await self.archive.load_player_history(player_id)
