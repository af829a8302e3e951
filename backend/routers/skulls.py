# backend/routers/skulls.py

import re

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import Response
from starlette.concurrency import run_in_threadpool
from web3.exceptions import ContractLogicError

from core.gallery import DEFAULT_TILE, GAP, MAX_TILE, MIN_TILE, clamp, columns_for_width
from core.sheet import SINGLE_EXPORT_PX, sheet_filename, sheet_png, single_filename, svg_to_png
from core.token_uri import decode_metadata, parse_token_uri_to_svg
from errors import TokenURIDecodeError

router = APIRouter(prefix="/skulls")

_TOKEN_ID_RE = re.compile(r"^[0-9]+$")
MAX_SHEET_WIDTH = 20_000  # viewport px


def _gallery_state(loader) -> dict:
    return {
        "mintedCount": str(loader.supply),
        "loaded": loader.loaded_count,
        "requested": loader.loaded,
        "canLoadMore": loader.can_load_more,
        "items": [it.to_dict() for it in loader.items],
    }


def _parse_token_id(token_id: str) -> int:
    if not _TOKEN_ID_RE.match(token_id):
        raise HTTPException(status_code=400, detail=f"Invalid token id: {token_id!r}")
    return int(token_id)


def _attachment(png: bytes, filename: str) -> Response:
    return Response(
        content=png,
        media_type="image/png",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("")
async def gallery(request: Request):
    loader = request.app.state.gallery
    if not loader.supply_known:
        await loader.refresh_supply()
    if loader.supply > 0 and not loader.items:
        await loader.load_more()
    return _gallery_state(loader)


@router.post("/load-more")
async def load_more(request: Request):
    loader = request.app.state.gallery
    if not loader.supply_known:
        await loader.refresh_supply()
    await loader.load_more()
    return _gallery_state(loader)


@router.post("/refresh")
async def refresh(request: Request, reset: bool = False):
    loader = request.app.state.gallery
    await loader.refresh_supply()
    if reset:
        loader.reset()
    return _gallery_state(loader)


@router.get("/sheet.png")
async def download_sheet(
    request: Request,
    tile: int = Query(DEFAULT_TILE),
    width: int = Query(DEFAULT_TILE * 6, ge=1, le=MAX_SHEET_WIDTH),
    scale: int = Query(3, ge=1, le=8),
):
    loader = request.app.state.gallery
    tile = clamp(tile, MIN_TILE, MAX_TILE)
    cols = columns_for_width(width, tile, GAP)
    tiles = loader.downloadable()

    try:
        png = await run_in_threadpool(sheet_png, tiles, tile, GAP, cols, scale, request.app.state.rasterize)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if png is None:
        return Response(status_code=204)
    return _attachment(png, sheet_filename(len(tiles)))


async def _token_uri(request: Request, token_id: int) -> str:
    try:
        return await request.app.state.chain.token_uri(token_id)
    except ContractLogicError as exc:
        raise HTTPException(status_code=404, detail=f"Skull #{token_id} not found: {exc}") from exc


@router.get("/{token_id}")
async def skull_detail(token_id: str, request: Request):
    tid = _parse_token_id(token_id)
    settings = request.app.state.settings
    uri = await _token_uri(request, tid)

    svg, meta, err = None, None, None
    try:
        meta = decode_metadata(uri)
        svg = parse_token_uri_to_svg(uri)
    except TokenURIDecodeError as exc:
        err = str(exc)
    if svg is None and err is None:
        err = "Could not parse on-chain SVG."

    if meta is not None:
        meta = {k: v for k, v in meta.items() if k != "image"}
    return {
        "tokenId": str(tid),
        "svg": svg,
        "metadata": meta,
        "error": err,
        "openseaUrl": settings.opensea_url(tid),
    }


async def _svg_or_404(request: Request, tid: int) -> str:
    svg = parse_token_uri_to_svg(await _token_uri(request, tid))
    if svg is None:
        raise HTTPException(status_code=404, detail="Could not parse on-chain SVG.")
    return svg


@router.get("/{token_id}/svg")
async def skull_svg(token_id: str, request: Request):
    svg = await _svg_or_404(request, _parse_token_id(token_id))
    return Response(content=svg, media_type="image/svg+xml")


@router.get("/{token_id}/png")
async def skull_png(token_id: str, request: Request, px: int = Query(SINGLE_EXPORT_PX, ge=16, le=4096)):
    tid = _parse_token_id(token_id)
    svg = await _svg_or_404(request, tid)
    png = await run_in_threadpool(svg_to_png, svg, px, request.app.state.rasterize)
    return _attachment(png, single_filename(tid))


@router.post("/{token_id}/refetch")
async def refetch(token_id: str, request: Request):
    tid = _parse_token_id(token_id)
    loader = request.app.state.gallery
    if not loader.supply_known:
        await loader.refresh_supply()
    if not 1 <= tid <= loader.supply:
        raise HTTPException(status_code=404, detail=f"Skull #{tid} has not been minted")
    item = await loader.refetch(tid)
    return {"item": None if item is None else item.to_dict(), "gallery": _gallery_state(loader)}
