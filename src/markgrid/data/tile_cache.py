"""Tile cache bookkeeping for the marks grid.

Tracks which tiles are loaded and which are in flight, and counts hits,
misses and requests for diagnostics. A tile key is never loaded and in
flight at the same time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..models.grid_window import GridTile, TileKey


@dataclass
class TileCacheStats:
    """Monotonic counters for one cache lifetime (reset on context change)."""

    requests: int = 0
    hits: int = 0
    misses: int = 0
    max_concurrent_inflight: int = 0


class TileCache:
    """Loaded/in-flight tile sets plus diagnostic counters.

    Lifecycle of a key:
        absent -> in flight (mark_inflight)
        in flight -> loaded (mark_loaded) | absent (mark_failed)
        loaded -> absent (invalidate)
    """

    def __init__(self):
        self._loaded: set[TileKey] = set()
        self._inflight: set[TileKey] = set()
        self.stats = TileCacheStats()

    @property
    def loaded_keys(self) -> frozenset[TileKey]:
        return frozenset(self._loaded)

    @property
    def inflight_keys(self) -> frozenset[TileKey]:
        return frozenset(self._inflight)

    def is_loaded(self, tile: GridTile) -> bool:
        return tile.key in self._loaded

    def is_inflight(self, tile: GridTile) -> bool:
        return tile.key in self._inflight

    def is_satisfied(self, tile: GridTile) -> bool:
        """Check whether a tile needs no fetch, counting a hit or a miss.

        Returns:
            True if the tile is loaded or already in flight.
        """
        if tile.key in self._loaded or tile.key in self._inflight:
            self.stats.hits += 1
            return True
        self.stats.misses += 1
        return False

    def mark_inflight(self, tile: GridTile) -> None:
        """Record that a fetch for this tile has been issued.

        Raises:
            RuntimeError: If the tile is already loaded or in flight
        """
        key = tile.key
        if key in self._loaded or key in self._inflight:
            raise RuntimeError(f"Tile {key} is already loaded or in flight")
        self._inflight.add(key)
        self.stats.requests += 1
        if len(self._inflight) > self.stats.max_concurrent_inflight:
            self.stats.max_concurrent_inflight = len(self._inflight)

    def mark_loaded(self, tile: GridTile) -> None:
        """Move a tile from in flight to loaded."""
        self._inflight.discard(tile.key)
        self._loaded.add(tile.key)

    def mark_failed(self, tile: GridTile) -> None:
        """Drop a tile from in flight so a later request retries it."""
        self._inflight.discard(tile.key)

    def invalidate(self, key: TileKey) -> None:
        """Forget a loaded tile so the next request for it fetches again."""
        self._loaded.discard(key)

    def reset(self) -> None:
        """Forget every tile and zero all counters."""
        self._loaded.clear()
        self._inflight.clear()
        self.stats = TileCacheStats()

    def __repr__(self) -> str:
        return f"TileCache({len(self._loaded)} loaded, {len(self._inflight)} in flight)"
