# backend/core/reconcile.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional, Set

from errors import MintError

logger = logging.getLogger(__name__)

RECONCILE_LIMIT = 80


class MintStatus(str, Enum):
    UNKNOWN = "unknown"  # never reconciled; not mintable
    NOT_MINTED = "not_minted"
    MINTED_UNKNOWN_TARGET = "minted_unknown_target"
    MINTED = "minted"


@dataclass(frozen=True)
class MintCandidate:
    letter_token_id: int
    letter_name: Optional[str] = None
    letter_image_url: Optional[str] = None

    used_letter: bool = False
    skull_token_id: int = 0  # 0 if none/unknown
    skull_owner: Optional[str] = None
    skull_nonce: int = 0
    skull_svg: Optional[str] = None

    status: MintStatus = MintStatus.UNKNOWN
    loading: bool = False
    generation: int = 0

    @property
    def minted(self) -> bool:
        return self.status in (MintStatus.MINTED, MintStatus.MINTED_UNKNOWN_TARGET)

    @property
    def mintable(self) -> bool:
        return not self.loading and self.status is MintStatus.NOT_MINTED

    def owned_by(self, address: Optional[str]) -> bool:
        if not self.skull_owner or not address:
            return False
        return self.skull_owner.lower() == address.lower()

    def display_name(self) -> str:
        if self.letter_name:
            return self.letter_name
        s = str(self.letter_token_id)
        return f"Letter #{s[:10]}…{s[-8:]}" if len(s) > 18 else f"Letter #{s}"

    def to_dict(self, viewer: Optional[str] = None) -> dict:
        return {
            "letterTokenId": str(self.letter_token_id),
            "letterName": self.letter_name,
            "displayName": self.display_name(),
            "letterImageUrl": self.letter_image_url,
            "usedLetter": self.used_letter,
            "skullTokenId": str(self.skull_token_id),
            "skullOwner": self.skull_owner,
            "skullOwnedByYou": self.owned_by(viewer),
            "skullNonce": str(self.skull_nonce),
            "skullSvg": self.skull_svg,
            "status": self.status.value,
            "minted": self.minted,
            "mintable": self.mintable,
            "loading": self.loading,
        }


class MintFlowController:
    """
    Mint state for the Letters one wallet holds.

    A Letter is mintable only after a successful read showed it unused with no
    skull. A failed read never flips a Letter to mintable, and a Letter seen as
    consumed stays consumed until refresh().
    """

    def __init__(self, reader, indexer, owner: str, minter=None, limit: int = RECONCILE_LIMIT):
        self.reader = reader
        self.indexer = indexer
        self.owner = owner
        self.minter = minter
        self.limit = limit
        self._items: Dict[int, MintCandidate] = {}
        self._order: List[int] = []
        self._generation: Dict[int, int] = {}
        self._consumed: Set[int] = set()
        self._in_flight: Set[int] = set()  # letters with a mint submitted, not yet confirmed
        self.loaded = False

    @property
    def items(self) -> List[MintCandidate]:
        return [self._items[i] for i in self._order]

    @property
    def mintable_count(self) -> int:
        return sum(1 for it in self._items.values() if it.mintable)

    def get(self, letter_token_id: int) -> Optional[MintCandidate]:
        return self._items.get(letter_token_id)

    def snapshot(self) -> dict:
        return {
            "address": self.owner,
            "letters": len(self._items),
            "mintable": self.mintable_count,
            "items": [it.to_dict(self.owner) for it in self.items],
        }

    def set_letters(self, letters) -> None:
        """Replace the candidate list. Session exclusions are dropped."""
        for token_id in self._generation:
            self._generation[token_id] += 1
        self._consumed.clear()
        self._items = {}
        for letter in letters:
            token_id = int(letter.token_id)
            self._items[token_id] = MintCandidate(
                letter_token_id=token_id,
                letter_name=letter.name,
                letter_image_url=letter.image_url,
                generation=self._generation.get(token_id, 0),
            )
        self._order = sorted(self._items)
        self.loaded = True

    async def refresh(self) -> List[MintCandidate]:
        letters = await self.indexer.get_letters(self.owner)
        self.set_letters(letters)
        await self.reconcile()
        return self.items

    async def reconcile(self) -> List[MintCandidate]:
        visible = self._order[: self.limit]
        if not visible:
            return []

        pending = []
        for token_id in visible:
            gen = self._generation.get(token_id, 0) + 1
            self._generation[token_id] = gen
            item = replace(self._items[token_id], loading=True, generation=gen)
            self._items[token_id] = item
            pending.append(item)

        results = await asyncio.gather(*(self._reconcile_one(it) for it in pending))
        for r in results:
            if r.generation < self._generation.get(r.letter_token_id, 0):
                continue
            if r.letter_token_id not in self._items:
                continue
            if r.letter_token_id in self._in_flight:
                r = replace(r, loading=True)
            self._items[r.letter_token_id] = r
        return [self._items[i] for i in visible]

    async def _reconcile_one(self, it: MintCandidate) -> MintCandidate:
        token_id = it.letter_token_id
        try:
            used, skull_id = await asyncio.gather(
                self.reader.used_letter_token(token_id),
                self.reader.skull_of_letter(token_id),
            )
        except Exception as exc:
            logger.warning("reconcile letter %s failed: %s", token_id, exc)
            return replace(it, loading=False)

        used = bool(used)
        skull_id = int(skull_id)
        minted = used or skull_id != 0 or token_id in self._consumed

        if not minted:
            return replace(
                it, used_letter=False, skull_token_id=0, skull_owner=None, skull_nonce=0,
                skull_svg=None, status=MintStatus.NOT_MINTED, loading=False,
            )

        self._consumed.add(token_id)
        if skull_id == 0:
            # used but skull id not visible yet; still never mintable
            return replace(
                it, used_letter=used, skull_token_id=0, skull_owner=None, skull_nonce=0,
                skull_svg=None, status=MintStatus.MINTED_UNKNOWN_TARGET, loading=False,
            )

        try:
            owner, nonce = await asyncio.gather(
                self.reader.owner_of(skull_id),
                self.reader.nonce_of(skull_id),
            )
            svg = await self.reader.preview_svg(token_id, int(nonce))
        except Exception as exc:
            logger.warning("skull %s (letter %s) lookup failed: %s", skull_id, token_id, exc)
            return replace(
                it, used_letter=used, skull_token_id=skull_id,
                status=MintStatus.MINTED_UNKNOWN_TARGET, loading=False,
            )

        return replace(
            it, used_letter=used, skull_token_id=skull_id, skull_owner=owner, skull_nonce=int(nonce),
            skull_svg=svg, status=MintStatus.MINTED, loading=False,
        )

    async def mint(self, letter_token_id: int, donation_eth: Optional[str] = "0"):
        if self.minter is None:
            raise MintError("This controller cannot submit transactions")
        it = self._items.get(letter_token_id)
        if it is None:
            raise MintError("You don’t own that Letter tokenId in this wallet.")
        if letter_token_id in self._in_flight:
            raise MintError("A mint for this Letter is already in progress.")
        if it.minted or letter_token_id in self._consumed:
            raise MintError("This Letter has already minted a Skull.")
        if not it.mintable:
            raise MintError("Letter state is not known yet; refresh and try again.")

        # claimed before the first await so a second request sees it
        self._in_flight.add(letter_token_id)
        self._items[letter_token_id] = replace(it, loading=True)
        try:
            result = await self.minter.mint(letter_token_id, donation_eth)
        except BaseException:
            current = self._items.get(letter_token_id)
            if current is not None:
                self._items[letter_token_id] = replace(current, loading=False)
            raise
        else:
            self._consumed.add(letter_token_id)
        finally:
            self._in_flight.discard(letter_token_id)

        await self.reconcile()
        return result
