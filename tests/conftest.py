"""
Shared fixtures: an in-memory LetterSkull contract and Letter indexer.
"""

import asyncio
from types import SimpleNamespace
from typing import Dict, List, Optional, Set

import pytest
from PIL import Image

from config import Settings
from core.token_uri import encode_token_uri, svg_data_uri
from errors import ChainReadError, IndexerError
from utils.indexer import LetterItem

SKULL_OWNER = "0x1111111111111111111111111111111111111111"
DEAD = "0x000000000000000000000000000000000000dEaD"


def skull_svg(token_id: int) -> str:
    return (
        '<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 24 24">'
        f'<rect width="24" height="24" fill="#000"/><title>Skull #{token_id}</title></svg>'
    )


def skull_uri(token_id: int) -> str:
    return encode_token_uri({"name": f"Skull #{token_id}", "image": svg_data_uri(skull_svg(token_id))})


class FakeChain:
    """Dict-backed stand-in for chain_utils.LetterSkullChain."""

    def __init__(self, next_token_id: int = 0, chain_id: int = 360):
        self.next_id = next_token_id
        self.id = chain_id
        self.uris: Dict[int, str] = {}
        self.fail_uri: Set[int] = set()
        self.delays: Dict[int, float] = {}
        self.gates: Dict[int, asyncio.Event] = {}

        self.used: Dict[int, bool] = {}
        self.skull_of: Dict[int, int] = {}
        self.owners: Dict[int, str] = {}
        self.nonces: Dict[int, int] = {}
        self.fail_reads: Set[int] = set()
        self.fail_owner: Set[int] = set()
        self.calls: List[tuple] = []

    async def chain_id(self) -> int:
        return self.id

    async def next_token_id(self) -> int:
        return self.next_id

    async def token_uri(self, token_id: int) -> str:
        self.calls.append(("tokenURI", token_id))
        if token_id in self.delays:
            await asyncio.sleep(self.delays[token_id])
        gate = self.gates.pop(token_id, None)
        if gate is not None:
            await gate.wait()
        if token_id in self.fail_uri:
            raise ChainReadError(f"tokenURI({token_id}) failed on every transport")
        return self.uris.get(token_id) or skull_uri(token_id)

    async def used_letter_token(self, letter_id: int) -> bool:
        self.calls.append(("usedLetterToken", letter_id))
        if letter_id in self.fail_reads:
            raise ChainReadError("rpc unavailable")
        return self.used.get(letter_id, False)

    async def skull_of_letter(self, letter_id: int) -> int:
        self.calls.append(("skullOfLetter", letter_id))
        if letter_id in self.fail_reads:
            raise ChainReadError("rpc unavailable")
        return self.skull_of.get(letter_id, 0)

    async def owner_of(self, skull_id: int) -> str:
        if skull_id in self.fail_owner:
            raise ChainReadError("ownerOf unavailable")
        return self.owners.get(skull_id, SKULL_OWNER)

    async def nonce_of(self, skull_id: int) -> int:
        return self.nonces.get(skull_id, 0)

    async def preview_svg(self, letter_id: int, nonce: int) -> str:
        return f'<svg xmlns="http://www.w3.org/2000/svg"><desc>{letter_id}:{nonce}</desc></svg>'

    def mark_minted(self, letter_id: int, skull_id: int, nonce: int = 0) -> None:
        self.used[letter_id] = True
        self.skull_of[letter_id] = skull_id
        self.nonces[skull_id] = nonce


class FakeIndexer:
    def __init__(self, owned: Optional[Dict[str, List[str]]] = None, fail: bool = False):
        self.owned = owned or {}
        self.fail = fail
        self.requests: List[str] = []

    async def get_letters(self, owner: str) -> List[LetterItem]:
        self.requests.append(owner)
        if self.fail:
            raise IndexerError("Alchemy getNFTsForOwner failed: 503")
        ids = self.owned.get(owner.lower(), [])
        return [LetterItem(token_id=t, name=f"Letter {t}", image_url=f"https://img/{t}.png") for t in ids]


class FakeMinter:
    def __init__(self, chain: FakeChain, delay: float = 0.0, fail: Optional[Exception] = None):
        self.chain = chain
        self.delay = delay
        self.fail = fail
        self.minted: List[tuple] = []

    async def mint(self, letter_token_id: int, donation_eth="0"):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail is not None:
            raise self.fail
        skull_id = len(self.minted) + 1
        self.minted.append((letter_token_id, donation_eth))
        self.chain.mark_minted(letter_token_id, skull_id)

        return SimpleNamespace(
            tx_hash="0x" + "ab" * 32,
            letter_token_id=letter_token_id,
            skull_token_id=skull_id,
            value_wei=0,
        )


def solid_rasterizer(svg: str, px: int) -> Image.Image:
    return Image.new("RGBA", (px, px), (255, 0, 0, 255))


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def indexer() -> FakeIndexer:
    return FakeIndexer()


@pytest.fixture
def settings() -> Settings:
    return Settings()
