from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError
from web3.middleware import ExtraDataToPOAMiddleware
from web3.providers import AsyncHTTPProvider

from config import Settings
from errors import ChainReadError

logger = logging.getLogger(__name__)

ROOT = Path(__file__).resolve().parent
ABI_PATH = ROOT / "mint" / "abi" / "LetterSkull.abi.json"


def load_abi(path: Path = ABI_PATH) -> list:
    if not path.exists():
        raise RuntimeError(f"ABI file not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def _redact(url: str) -> str:
    # alchemy keys live in the path
    return url.split("/v2/")[0] if "/v2/" in url else url


class LetterSkullChain:
    """
    Typed reads against the LetterSkull contract.

    Every configured RPC url gets its own client; a read is tried on each in
    order until one answers. A revert is an answer, so it is raised right away.
    """

    def __init__(self, settings: Settings, urls: Optional[List[str]] = None):
        self.settings = settings
        self.abi = load_abi()
        self.urls = list(urls or settings.rpc_urls)
        self.clients = [self._client(url) for url in self.urls]
        self.contracts = [
            w3.eth.contract(address=settings.letterskull_contract, abi=self.abi) for w3 in self.clients
        ]

    @staticmethod
    def _client(url: str) -> AsyncWeb3:
        w3 = AsyncWeb3(AsyncHTTPProvider(url))
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return w3

    # writes and chain-id checks go through the primary transport
    @property
    def w3(self) -> AsyncWeb3:
        return self.clients[0]

    @property
    def contract(self):
        return self.contracts[0]

    async def aclose(self) -> None:
        for url, w3 in zip(self.urls, self.clients):
            try:
                await w3.provider.disconnect()
            except Exception as exc:
                logger.warning("closing %s failed: %s", _redact(url), exc)

    async def _read(self, fn_name: str, *args):
        last_exc: Optional[BaseException] = None
        for url, contract in zip(self.urls, self.contracts):
            fn = getattr(contract.functions, fn_name)(*args)
            try:
                return await asyncio.wait_for(fn.call(), timeout=self.settings.rpc_timeout)
            except ContractLogicError:
                raise
            except Exception as exc:
                last_exc = exc
                logger.warning("%s%s failed via %s: %s", fn_name, args, _redact(url), exc)
        raise ChainReadError(f"{fn_name} failed on every transport: {last_exc}") from last_exc

    async def chain_id(self) -> int:
        return int(await self.w3.eth.chain_id)

    async def next_token_id(self) -> int:
        return int(await self._read("nextTokenId"))

    async def token_uri(self, skull_token_id: int) -> str:
        return str(await self._read("tokenURI", skull_token_id))

    async def used_letter_token(self, letter_token_id: int) -> bool:
        return bool(await self._read("usedLetterToken", letter_token_id))

    async def skull_of_letter(self, letter_token_id: int) -> int:
        return int(await self._read("skullOfLetter", letter_token_id))

    async def owner_of(self, skull_token_id: int) -> str:
        return str(await self._read("ownerOf", skull_token_id))

    async def nonce_of(self, skull_token_id: int) -> int:
        return int(await self._read("nonceOf", skull_token_id))

    async def preview_svg(self, letter_token_id: int, nonce: int) -> str:
        return str(await self._read("previewSvg", letter_token_id, nonce))
