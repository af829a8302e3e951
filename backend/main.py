# main.py
# FastAPI entry point (wiring + routing only)
from __future__ import annotations

import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from chain_utils import LetterSkullChain
from config import Settings, load_settings
from core.gallery import GalleryLoader
from core.sheet import Rasterizer, rasterize_svg
from errors import LetterSkullError
from mint.mint import LetterSkullMinter
from routers import letters, nfts, skulls
from utils.indexer import AlchemyIndexer

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    chain=None,
    indexer=None,
    rasterize: Rasterizer = rasterize_svg,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        s = settings or load_settings()
        logging.basicConfig(level=s.log_level)

        c = chain or LetterSkullChain(s)
        idx = indexer or AlchemyIndexer(s.alchemy_key, s.chain.alchemy_network, s.letter_contract)

        app.state.settings = s
        app.state.chain = c
        app.state.indexer = idx
        app.state.gallery = GalleryLoader(c, page_size=s.gallery_page_size)
        app.state.minter = LetterSkullMinter(c, s)
        app.state.controllers = OrderedDict()
        app.state.rasterize = rasterize
        logger.info("LetterSkull backend on %s (chain %s), mint %s",
                    s.chain.name, s.chain.id, "enabled" if s.can_mint else "disabled")
        try:
            yield
        finally:
            if indexer is None:
                await idx.aclose()
            if chain is None:
                await c.aclose()

    app = FastAPI(
        title="LetterSkull",
        description="On-chain skull gallery, sheet export and Letter → Skull minting",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request, exc: RequestValidationError):
        logger.warning("Validation error on %s %s: %s", request.method, request.url.path, exc.errors())
        details = [
            {
                "path": [p for p in err.get("loc", ()) if p != "body"],
                "message": err.get("msg", ""),
                "code": err.get("type", ""),
            }
            for err in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"error": "Validation failed", "details": details})

    @app.exception_handler(LetterSkullError)
    async def letterskull_exception_handler(request, exc: LetterSkullError):
        logger.warning("%s on %s %s: %s", exc.__class__.__name__, request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "details": exc.details})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    app.include_router(nfts.router)
    app.include_router(letters.router)
    app.include_router(skulls.router)

    @app.get("/ping")
    def ping():
        return {"msg": "pong"}

    @app.get("/api/config")
    def public_config():
        return app.state.settings.public_view()

    return app


app = create_app()
