# backend/utils/indexer.py
"""
Alchemy NFT API (v3) client for the Letter collection.

Alchemy's metadata payload comes in several shapes depending on API version;
the extract_* helpers pull name / image / tokenUri out of whichever shape is
present and LetterItem is the only type that leaves this module.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from errors import IndexerError

logger = logging.getLogger(__name__)

_HEX_DIGITS = re.compile(r"^[0-9a-fA-F]+$")
_HAS_HEX_LETTER = re.compile(r"[a-fA-F]")


class LetterItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token_id: str = Field(alias="tokenId")  # decimal string
    name: Optional[str] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    token_uri: Optional[str] = Field(default=None, alias="tokenUri")

    @classmethod
    def from_metadata(cls, token_id: str, md: Any) -> "LetterItem":
        return cls(
            token_id=token_id,
            name=extract_name(md),
            image_url=extract_image_url(md),
            token_uri=extract_token_uri(md),
        )


def parse_token_id(token_id: str) -> str:
    """Alchemy ids may be decimal, 0x-hex or bare hex; normalize to decimal."""
    t = str(token_id).strip()
    if t.lower().startswith("0x"):
        return str(int(t, 16))
    if _HEX_DIGITS.match(t) and _HAS_HEX_LETTER.search(t):
        return str(int(t, 16))
    return str(int(t))


def _get(obj: Any, key: str) -> Any:
    return obj.get(key) if isinstance(obj, dict) else None


def extract_token_uri(md: Any) -> Optional[str]:
    value = _get(md, "tokenUri")
    if isinstance(value, str):
        return value
    raw = _get(value, "raw")
    if isinstance(raw, str):
        return raw
    raw_uri = _get(_get(md, "raw"), "tokenUri")
    if isinstance(raw_uri, str):
        return raw_uri
    return None


def extract_image_url(md: Any) -> Optional[str]:
    image = _get(md, "image")
    for key in ("pngUrl", "cachedUrl", "originalUrl"):
        url = _get(image, key)
        if isinstance(url, str):
            return url
    raw_image = _get(_get(_get(md, "raw"), "metadata"), "image")
    if isinstance(raw_image, str):
        return raw_image
    return None


def extract_name(md: Any) -> Optional[str]:
    name = _get(md, "name")
    if isinstance(name, str):
        return name
    raw_name = _get(_get(_get(md, "raw"), "metadata"), "name")
    if isinstance(raw_name, str):
        return raw_name
    return None


class AlchemyIndexer:
    def __init__(self, api_key: str, network: str, contract: str, client: Optional[httpx.AsyncClient] = None):
        self.contract = contract
        self.base_url = f"https://{network}.g.alchemy.com/nft/v3/{api_key}"
        self.client = client or httpx.AsyncClient(timeout=20.0)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _get_json(self, path: str, params) -> dict:
        try:
            resp = await self.client.get(f"{self.base_url}/{path}", params=params)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as exc:
            raise IndexerError(f"Alchemy {path} failed: {exc}") from exc
        except ValueError as exc:
            raise IndexerError(f"Alchemy {path} returned invalid JSON") from exc

    async def owned_token_ids(self, owner: str) -> List[str]:
        ids: List[str] = []
        page_key: Optional[str] = None
        while True:
            params = [
                ("owner", owner),
                ("contractAddresses[]", self.contract),
                ("withMetadata", "false"),
                ("pageSize", "100"),
            ]
            if page_key:
                params.append(("pageKey", page_key))
            data = await self._get_json("getNFTsForOwner", params)
            for nft in data.get("ownedNfts") or []:
                ids.append(parse_token_id(nft["tokenId"]))
            page_key = data.get("pageKey")
            if not page_key:
                break
        return sorted(ids, key=int)

    async def token_metadata(self, token_id: str) -> dict:
        return await self._get_json(
            "getNFTMetadata",
            {"contractAddress": self.contract, "tokenId": token_id, "refreshCache": "false"},
        )

    async def _letter(self, token_id: str) -> LetterItem:
        try:
            md = await self.token_metadata(token_id)
        except IndexerError as exc:
            logger.warning("metadata for letter %s unavailable: %s", token_id, exc)
            return LetterItem(token_id=token_id)
        return LetterItem.from_metadata(token_id, md)

    async def get_letters(self, owner: str) -> List[LetterItem]:
        token_ids = await self.owned_token_ids(owner)
        return list(await asyncio.gather(*(self._letter(t) for t in token_ids)))
