# backend/core/gallery.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

from core.token_uri import parse_token_uri_to_svg

logger = logging.getLogger(__name__)

PAGE_SIZE = 80
DEFAULT_TILE = 140
MIN_TILE = 64
MAX_TILE = 260
TILE_STEP = 16
GAP = 0  # pixel-grid look


class ItemState(str, Enum):
    PENDING = "pending"
    LOADED = "loaded"
    ERROR = "error"


@dataclass(frozen=True)
class GalleryItem:
    token_id: int
    state: ItemState = ItemState.PENDING
    svg: Optional[str] = None
    error: Optional[str] = None
    generation: int = 0

    @property
    def loading(self) -> bool:
        return self.state is ItemState.PENDING

    @property
    def undecodable(self) -> bool:
        return self.state is ItemState.LOADED and self.svg is None

    def to_dict(self) -> dict:
        return {
            "tokenId": str(self.token_id),
            "state": self.state.value,
            "svg": self.svg,
            "error": self.error,
        }


def clamp(n: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, n))


def step_tile(tile: int, delta: int) -> int:
    return clamp(tile + delta * TILE_STEP, MIN_TILE, MAX_TILE)


def columns_for_width(width: int, tile: int, gap: int = GAP) -> int:
    return max(1, (width + gap) // (tile + gap))


def supply_from_next_id(next_id: int) -> int:
    # ids are 1..nextId-1
    return next_id - 1 if next_id > 0 else 0


class GalleryLoader:
    """
    Materializes skull ids 1..supply page by page.

    Ids of a page show up as pending before any read returns. Reads within a
    page run concurrently; once the page settles the results are merged by id
    and the collection is kept sorted ascending.
    """

    def __init__(self, reader, page_size: int = PAGE_SIZE):
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.reader = reader
        self.page_size = page_size
        self.supply = 0
        self.loaded = 0  # watermark: highest id already requested
        self.supply_known = False
        self._items: Dict[int, GalleryItem] = {}
        self._order: List[int] = []
        self._generation: Dict[int, int] = {}

    @property
    def items(self) -> List[GalleryItem]:
        return [self._items[i] for i in self._order]

    @property
    def can_load_more(self) -> bool:
        return self.loaded < self.supply

    @property
    def loaded_count(self) -> int:
        return sum(1 for it in self._items.values() if it.state is ItemState.LOADED and it.svg)

    def get(self, token_id: int) -> Optional[GalleryItem]:
        return self._items.get(token_id)

    async def refresh_supply(self) -> int:
        next_id = await self.reader.next_token_id()
        self.supply = supply_from_next_id(int(next_id))
        self.supply_known = True
        return self.supply

    async def load_more(self) -> List[GalleryItem]:
        if self.loaded >= self.supply:
            return []

        start = self.loaded + 1
        end = min(self.loaded + self.page_size, self.supply)
        batch = list(range(start, end + 1))

        pending = [self._mark_pending(token_id) for token_id in batch]
        self.loaded = end
        self._resort()

        results = await asyncio.gather(*(self._fetch(it.token_id, it.generation) for it in pending))
        self._merge(results)
        return [self._items[t] for t in batch if t in self._items]

    async def refetch(self, token_id: int) -> Optional[GalleryItem]:
        pending = self._mark_pending(token_id)
        self._resort()
        result = await self._fetch(token_id, pending.generation)
        self._merge([result])
        return self._items.get(token_id)

    def downloadable(self) -> List[Tuple[int, str]]:
        return [(it.token_id, it.svg) for it in self.items if it.state is ItemState.LOADED and it.svg]

    def reset(self) -> None:
        # reads still in flight must not resurrect cleared items
        for token_id in self._generation:
            self._generation[token_id] += 1
        self.loaded = 0
        self._items.clear()
        self._order = []

    def _mark_pending(self, token_id: int) -> GalleryItem:
        gen = self._generation.get(token_id, 0) + 1
        self._generation[token_id] = gen
        current = self._items.get(token_id)
        if current is None:
            item = GalleryItem(token_id=token_id, generation=gen)
        else:
            item = replace(current, state=ItemState.PENDING, error=None, generation=gen)
        self._items[token_id] = item
        return item

    async def _fetch(self, token_id: int, generation: int) -> GalleryItem:
        try:
            uri = await self.reader.token_uri(token_id)
            svg = parse_token_uri_to_svg(uri)
            return GalleryItem(token_id=token_id, state=ItemState.LOADED, svg=svg, generation=generation)
        except Exception as exc:
            logger.warning("tokenURI(%s) failed: %s", token_id, exc)
            msg = str(exc) or "Failed to load tokenURI"
            return GalleryItem(token_id=token_id, state=ItemState.ERROR, error=msg, generation=generation)

    def _merge(self, results) -> None:
        for r in results:
            if r.generation < self._generation.get(r.token_id, 0):
                # an older request landed after a newer one was issued
                continue
            self._items[r.token_id] = r
        self._resort()

    def _resort(self) -> None:
        self._order = sorted(self._items)
