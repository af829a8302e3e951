# backend/config.py
# Chain / transport / connector setup plus runtime settings, built once at startup
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from dotenv import load_dotenv
from eth_account import Account
from web3 import Web3

from errors import ConfigError
from mint.wallet_io import WALLET_JSON, load_wallet

ROOT = Path(__file__).resolve().parent  # backend/
ENV_PATH = ROOT / ".env"

LETTER_CONTRACT_ADDRESS = "0xb8261f4431928F176c5A07887c8fcAcCd13c6D16"
LETTERSKULL_CONTRACT_ADDRESS = "0x75A9bd203aFbB4D8FB233372d1D9Ea30E0F1Adfd"

_ADDR_RE = re.compile(r"0x[a-fA-F0-9]{40}")
_PK_RE = re.compile(r"0x[a-fA-F0-9]{64}")


@dataclass(frozen=True)
class ChainConfig:
    id: int
    key: str
    name: str
    alchemy_network: str
    alchemy_rpc: str
    public_rpc: str
    opensea_slug: str

    def rpc_urls(self, alchemy_key: str) -> Tuple[str, ...]:
        # alchemy first, public endpoint as fallback
        urls = []
        if alchemy_key:
            urls.append(self.alchemy_rpc.format(key=alchemy_key))
        urls.append(self.public_rpc)
        return tuple(urls)


SHAPE = ChainConfig(
    id=360,
    key="shape",
    name="Shape",
    alchemy_network="shape-mainnet",
    alchemy_rpc="https://shape-mainnet.g.alchemy.com/v2/{key}",
    public_rpc="https://mainnet.shape.network",
    opensea_slug="shape",
)
SHAPE_SEPOLIA = ChainConfig(
    id=11011,
    key="shape-sepolia",
    name="Shape Sepolia",
    alchemy_network="shape-sepolia",
    alchemy_rpc="https://shape-sepolia.g.alchemy.com/v2/{key}",
    public_rpc="https://sepolia.shape.network",
    opensea_slug="shape-sepolia",
)
MAINNET = ChainConfig(
    id=1,
    key="mainnet",
    name="Ethereum",
    alchemy_network="eth-mainnet",
    alchemy_rpc="https://eth-mainnet.g.alchemy.com/v2/{key}",
    public_rpc="https://cloudflare-eth.com",
    opensea_slug="ethereum",
)

CHAINS: Dict[str, ChainConfig] = {c.key: c for c in (SHAPE, SHAPE_SEPOLIA, MAINNET)}


@dataclass(frozen=True)
class Settings:
    chain: ChainConfig = SHAPE
    alchemy_key: str = ""
    walletconnect_project_id: str = ""
    app_origin: str = "https://builder-kit.vercel.app"
    letter_contract: str = LETTER_CONTRACT_ADDRESS
    letterskull_contract: str = LETTERSKULL_CONTRACT_ADDRESS

    # signer (optional; minting is refused without it)
    private_key: Optional[str] = field(default=None, repr=False)
    public_address: Optional[str] = None
    disable_mint: bool = False

    max_fee_gwei: float = 2.0
    max_priority_gwei: float = 1.0
    receipt_timeout: int = 180
    rpc_timeout: float = 20.0

    gallery_page_size: int = 80
    reconcile_limit: int = 80
    log_level: str = "INFO"

    @property
    def rpc_urls(self) -> Tuple[str, ...]:
        return self.chain.rpc_urls(self.alchemy_key)

    @property
    def can_mint(self) -> bool:
        return not self.disable_mint and bool(self.private_key and self.public_address)

    def opensea_url(self, skull_token_id) -> str:
        return f"https://opensea.io/assets/{self.chain.opensea_slug}/{self.letterskull_contract}/{skull_token_id}"

    def connectors(self) -> List[dict]:
        connectors: List[dict] = [{"type": "injected"}]
        if self.walletconnect_project_id:
            connectors.append({
                "type": "walletConnect",
                "projectId": self.walletconnect_project_id,
                "showQrModal": True,
                "metadata": {
                    "name": "Builder Kit",
                    "description": "Builder Kit on Shape",
                    "url": self.app_origin,
                    "icons": [f"{self.app_origin}/favicon.ico"],
                },
            })
        return connectors

    def public_view(self) -> dict:
        return {
            "chain": {"id": self.chain.id, "name": self.chain.name},
            "chains": [
                {"id": c.id, "key": c.key, "name": c.name, "transports": len(c.rpc_urls(self.alchemy_key))}
                for c in CHAINS.values()
            ],
            "connectors": self.connectors(),
            "contracts": {
                "letter": self.letter_contract,
                "letterSkull": self.letterskull_contract,
            },
            "mintEnabled": self.can_mint,
            "signer": self.public_address,
        }


def _checksum(name: str, value: str) -> str:
    value = (value or "").strip()
    if "," in value or not _ADDR_RE.fullmatch(value) or not Web3.is_address(value):
        raise ConfigError(f"Invalid {name}: {value!r}")
    return Web3.to_checksum_address(value)


def _flag(raw: Optional[str]) -> bool:
    return (raw or "").strip().lower() in {"1", "true", "yes", "on"}


def _signer(env: Mapping[str, str], wallet_path: Path) -> Tuple[Optional[str], Optional[str]]:
    pk = (env.get("PRIVATE_KEY") or "").strip()
    addr = (env.get("PUBLIC_ADDRESS") or "").strip()
    if not pk:
        file_pk, file_addr = load_wallet(wallet_path)
        pk = (file_pk or "").strip()
        addr = addr or (file_addr or "").strip()
    if not pk:
        return None, None

    if not pk.startswith("0x"):
        pk = "0x" + pk
    if not _PK_RE.fullmatch(pk):
        raise ConfigError("PRIVATE_KEY must be 0x + 64 hex characters")

    derived = Account.from_key(pk).address
    if addr and _checksum("PUBLIC_ADDRESS", addr) != derived:
        raise ConfigError(f"PUBLIC_ADDRESS {addr!r} does not match PRIVATE_KEY")
    return pk, derived


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    env_path: Path = ENV_PATH,
    wallet_path: Path = WALLET_JSON,
) -> Settings:
    if environ is None:
        if env_path.exists():
            load_dotenv(env_path)
        environ = os.environ
    env = environ

    chain_key = (env.get("LETTERSKULL_CHAIN") or SHAPE.key).strip().lower()
    chain = CHAINS.get(chain_key)
    if chain is None:
        raise ConfigError(f"Unknown LETTERSKULL_CHAIN {chain_key!r}; expected one of {sorted(CHAINS)}")

    private_key, public_address = _signer(env, wallet_path)

    try:
        return Settings(
            chain=chain,
            alchemy_key=(env.get("ALCHEMY_API_KEY") or "").strip(),
            walletconnect_project_id=(env.get("WALLETCONNECT_PROJECT_ID") or "").strip(),
            app_origin=(env.get("APP_ORIGIN") or Settings.app_origin).strip().rstrip("/"),
            letter_contract=_checksum(
                "LETTER_CONTRACT_ADDRESS", env.get("LETTER_CONTRACT_ADDRESS") or LETTER_CONTRACT_ADDRESS
            ),
            letterskull_contract=_checksum(
                "LETTERSKULL_CONTRACT_ADDRESS", env.get("LETTERSKULL_CONTRACT_ADDRESS") or LETTERSKULL_CONTRACT_ADDRESS
            ),
            private_key=private_key,
            public_address=public_address,
            disable_mint=_flag(env.get("LETTERSKULL_DISABLE_MINT")),
            max_fee_gwei=float(env.get("MAX_FEE_GWEI") or Settings.max_fee_gwei),
            max_priority_gwei=float(env.get("MAX_PRIORITY_GWEI") or Settings.max_priority_gwei),
            receipt_timeout=int(env.get("RECEIPT_TIMEOUT") or Settings.receipt_timeout),
            rpc_timeout=float(env.get("RPC_TIMEOUT") or Settings.rpc_timeout),
            gallery_page_size=int(env.get("GALLERY_PAGE_SIZE") or Settings.gallery_page_size),
            reconcile_limit=int(env.get("RECONCILE_LIMIT") or Settings.reconcile_limit),
            log_level=(env.get("LOG_LEVEL") or Settings.log_level).strip().upper(),
        )
    except ValueError as exc:
        raise ConfigError(f"Invalid numeric setting: {exc}") from exc
