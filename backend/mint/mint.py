# -*- coding: utf-8 -*-
"""Payable LetterSkull mint: signs with the configured wallet, waits for the receipt."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from web3 import Web3
from web3.exceptions import ContractLogicError
from web3.logs import DISCARD

from config import Settings
from errors import MintDisabled, MintError, WrongNetwork

logger = logging.getLogger(__name__)

# ---------- revert reasons ----------

_REASONS = {
    "LetterAlreadyUsed": "This Letter has already minted a Skull.",
    "NeedLetter": "You don’t own that Letter tokenId in this wallet.",
    "MintClosed": "Mint is currently closed.",
    "SealedForever": "Mint is sealed forever.",
}
# custom errors come back as raw 4-byte selectors unless the node decodes them
_SELECTORS = {Web3.keccak(text=f"{name}()")[:4].hex().removeprefix("0x"): name for name in _REASONS}


def humanize_mint_error(msg: str) -> str:
    m = (msg or "").lower()
    for name, text in _REASONS.items():
        if name.lower() in m:
            return text
    for selector, name in _SELECTORS.items():
        if selector in m:
            return _REASONS[name]
    return msg


def parse_donation(donation_eth: Optional[str]) -> int:
    """ETH amount as typed by the user -> wei. Blank means zero."""
    raw = (donation_eth or "").strip()
    if raw in ("", "0"):
        return 0
    try:
        amount = Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid donation amount: {donation_eth!r}") from exc
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"Invalid donation amount: {donation_eth!r}")
    return int(Web3.to_wei(amount, "ether"))


@dataclass
class MintResult:
    tx_hash: str
    letter_token_id: int
    value_wei: int = 0
    skull_token_id: Optional[int] = None
    status: int = 1


# ---------- core ops ----------

class LetterSkullMinter:
    def __init__(self, chain, settings: Settings):
        self.chain = chain
        self.settings = settings
        # one signer, one nonce sequence
        self._send_lock = asyncio.Lock()

    def _guard(self) -> None:
        if self.settings.disable_mint:
            raise MintDisabled("Minting disabled (LETTERSKULL_DISABLE_MINT=1)")
        if not self.settings.can_mint:
            raise MintDisabled("No signing wallet configured (PRIVATE_KEY / mint/wallet.json)")

    async def _check_network(self) -> None:
        chain_id = await self.chain.chain_id()
        if chain_id != self.settings.chain.id:
            raise WrongNetwork(f"Please switch to {self.settings.chain.name} to mint (connected to chain {chain_id}).")

    async def send_mint(self, letter_token_id: int, value_wei: int = 0) -> str:
        self._guard()
        await self._check_network()

        async with self._send_lock:
            return await self._sign_and_send(letter_token_id, value_wei)

    async def _sign_and_send(self, letter_token_id: int, value_wei: int) -> str:
        w3 = self.chain.w3
        sender = self.settings.public_address
        fn = self.chain.contract.functions.mint(letter_token_id)

        try:
            nonce = await w3.eth.get_transaction_count(sender, "pending")
            tx = await fn.build_transaction({
                "from": sender,
                "value": value_wei,
                "nonce": nonce,
                "chainId": self.settings.chain.id,
                "type": 2,
                "maxFeePerGas": w3.to_wei(self.settings.max_fee_gwei, "gwei"),
                "maxPriorityFeePerGas": w3.to_wei(self.settings.max_priority_gwei, "gwei"),
            })
            # headroom, but capped
            est = await w3.eth.estimate_gas(tx)
            tx["gas"] = int(min(est * 1.2, est + 150_000))
        except ContractLogicError as exc:
            raise MintError(humanize_mint_error(_revert_text(exc)), details=str(exc)) from exc

        signed = w3.eth.account.sign_transaction(tx, private_key=self.settings.private_key)
        tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
        logger.info("mint(%s) sent value=%s tx=%s", letter_token_id, value_wei, tx_hash.to_0x_hex())
        return tx_hash.to_0x_hex()

    async def wait_skull_id(self, tx_hash_hex: str, letter_token_id: int, value_wei: int = 0) -> MintResult:
        receipt = await self.chain.w3.eth.wait_for_transaction_receipt(
            tx_hash_hex, timeout=self.settings.receipt_timeout
        )
        result = MintResult(
            tx_hash=tx_hash_hex,
            letter_token_id=letter_token_id,
            value_wei=value_wei,
            status=int(receipt["status"]),
        )
        if result.status != 1:
            raise MintError("Mint transaction reverted", details={"txHash": tx_hash_hex})

        # ERC721 Transfer from the zero address carries the new skull id
        for evt in self.chain.contract.events.Transfer().process_receipt(receipt, errors=DISCARD):
            if int(evt["args"]["from"], 16) == 0:
                result.skull_token_id = int(evt["args"]["tokenId"])
                break
        return result

    async def mint(self, letter_token_id: int, donation_eth: Optional[str] = "0") -> MintResult:
        value = parse_donation(donation_eth)
        tx_hash = await self.send_mint(letter_token_id, value)
        return await self.wait_skull_id(tx_hash, letter_token_id, value)


def _revert_text(exc: Exception) -> str:
    data = getattr(exc, "data", None)
    parts = [str(exc)]
    if isinstance(data, str):
        parts.append(data)
    return " ".join(parts)
