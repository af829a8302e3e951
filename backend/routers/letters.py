# backend/routers/letters.py
# Mint flow: owned Letters, their skull state, payable mint

import logging

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field, field_validator
from web3 import Web3
from web3.exceptions import Web3Exception

from core.reconcile import MintFlowController
from errors import MintDisabled, MintError
from mint.mint import humanize_mint_error
from routers.nfts import validate_address

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

MAX_CONTROLLERS = 256


class MintRequest(BaseModel):
    letter_token_id: str = Field(alias="letterTokenId")
    donation_eth: str = Field(default="0", alias="donationEth")

    @field_validator("letter_token_id")
    @classmethod
    def check_token_id(cls, value: str) -> str:
        if not value.isdigit():
            raise ValueError("letterTokenId must be a decimal string")
        return value


def controller_for(request: Request, address: str) -> MintFlowController:
    """Per-wallet controller, least recently used evicted first. The signer's is never evicted."""
    state = request.app.state
    controllers = state.controllers
    signer = state.settings.public_address
    key = Web3.to_checksum_address(address)

    ctl = controllers.get(key)
    if ctl is not None:
        controllers.move_to_end(key)
        return ctl

    minter = state.minter if key == signer else None
    ctl = MintFlowController(
        state.chain, state.indexer, key, minter=minter, limit=state.settings.reconcile_limit
    )
    controllers[key] = ctl
    while len(controllers) > MAX_CONTROLLERS:
        oldest = next((k for k in controllers if k != signer), None)
        if oldest is None:
            break
        del controllers[oldest]
    return ctl


def _checked(address: str) -> str:
    try:
        return validate_address(address)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/letters/{address}")
async def letters(address: str, request: Request):
    ctl = controller_for(request, _checked(address))
    if not ctl.loaded:
        await ctl.refresh()
    return ctl.snapshot()


@router.post("/letters/{address}/refresh")
async def refresh_letters(address: str, request: Request):
    ctl = controller_for(request, _checked(address))
    await ctl.refresh()
    return ctl.snapshot()


@router.post("/mint")
async def mint(payload: MintRequest, request: Request):
    settings = request.app.state.settings
    if not settings.can_mint:
        raise MintDisabled("Minting is not enabled on this server")

    ctl = controller_for(request, settings.public_address)
    if not ctl.loaded:
        await ctl.refresh()

    try:
        result = await ctl.mint(int(payload.letter_token_id), payload.donation_eth)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Web3Exception as exc:
        logger.warning("mint(%s) failed: %s", payload.letter_token_id, exc)
        raise MintError(humanize_mint_error(str(exc)), details=str(exc)) from exc

    return {
        "ok": True,
        "message": "Mint confirmed",
        "txHash": result.tx_hash,
        "letterTokenId": str(result.letter_token_id),
        "skullTokenId": None if result.skull_token_id is None else str(result.skull_token_id),
        "valueWei": str(result.value_wei),
        "state": ctl.snapshot(),
    }
