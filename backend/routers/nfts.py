# backend/routers/nfts.py

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator
from web3 import Web3

logger = logging.getLogger(__name__)

router = APIRouter()


def validate_address(value: str) -> str:
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValueError("Invalid Ethereum address format")
    return value


class GetNftsRequest(BaseModel):
    address: str

    @field_validator("address")
    @classmethod
    def check_address(cls, value: str) -> str:
        return validate_address(value)


@router.post("/api/get-nfts")
async def get_nfts(payload: GetNftsRequest, request: Request):
    settings = request.app.state.settings
    indexer = request.app.state.indexer
    try:
        letters = await indexer.get_letters(payload.address)
    except Exception as exc:
        logger.exception("Error fetching NFTs for %s", payload.address)
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to fetch NFTs", "details": str(exc) or exc.__class__.__name__},
        )

    return {
        "success": True,
        "address": payload.address,
        "letterContract": settings.letter_contract,
        "letters": [l.model_dump(by_alias=True) for l in letters],
    }
