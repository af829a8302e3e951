# backend/core/sheet.py
"""
PNG export of on-chain skull SVGs.

Tiles are rasterized with crisp edges (no anti-aliasing) so the pixel-art
stays sharp, then pasted onto one transparent sheet in reading order.
"""
from __future__ import annotations

import io
import math
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from PIL import Image

SVG_NS = "http://www.w3.org/2000/svg"
ET.register_namespace("", SVG_NS)
ET.register_namespace("xlink", "http://www.w3.org/1999/xlink")

DEFAULT_SCALE = 2
SINGLE_EXPORT_PX = 1800
MAX_SHEET_PIXELS = 100_000_000  # ~400 MB of RGBA

Rasterizer = Callable[[str, int], Image.Image]


@dataclass(frozen=True)
class SheetLayout:
    count: int
    cols: int
    rows: int
    tile: int  # output px per tile (tile * scale)
    gap: int   # output px between tiles
    width: int
    height: int

    def position(self, index: int) -> Tuple[int, int]:
        r, c = divmod(index, self.cols)
        return c * (self.tile + self.gap), r * (self.tile + self.gap)


def sheet_layout(count: int, tile: int, gap: int, cols: int, scale: int = DEFAULT_SCALE) -> SheetLayout:
    if count <= 0:
        raise ValueError("count must be positive")
    if cols <= 0 or tile <= 0 or scale <= 0 or gap < 0:
        raise ValueError("cols, tile and scale must be positive, gap non-negative")
    cols = min(cols, count)
    rows = math.ceil(count / cols)
    out_tile = tile * scale
    out_gap = gap * scale
    width = cols * out_tile + (cols - 1) * out_gap
    height = rows * out_tile + (rows - 1) * out_gap
    if width * height > MAX_SHEET_PIXELS:
        raise ValueError(f"Sheet of {width}x{height} px is too large; use a smaller tile or scale")
    return SheetLayout(
        count=count,
        cols=cols,
        rows=rows,
        tile=out_tile,
        gap=out_gap,
        width=width,
        height=height,
    )


def prepare_svg(svg: str, px: int) -> bytes:
    root = ET.fromstring(svg)
    root.set("width", str(px))
    root.set("height", str(px))
    root.set("shape-rendering", "crispEdges")
    return ET.tostring(root, encoding="utf-8")


def rasterize_svg(svg: str, px: int) -> Image.Image:
    import cairosvg  # needs the native cairo library; loaded on first raster
    png = cairosvg.svg2png(bytestring=prepare_svg(svg, px), output_width=px, output_height=px)
    img = Image.open(io.BytesIO(png)).convert("RGBA")
    if img.size != (px, px):
        img = img.resize((px, px), Image.Resampling.NEAREST)
    return img


def compose_sheet(
    tiles: Sequence[Tuple[int, str]],
    tile: int,
    gap: int,
    cols: int,
    scale: int = DEFAULT_SCALE,
    rasterize: Rasterizer = rasterize_svg,
) -> Optional[Image.Image]:
    """
    Lay `tiles` (token id, svg) out left-to-right, top-to-bottom.

    Callers pass only decodable skulls; a tile that fails to rasterize fails
    the whole sheet. Returns None for an empty list.
    """
    if not tiles:
        return None

    layout = sheet_layout(len(tiles), tile, gap, cols, scale)
    images = [rasterize(svg, layout.tile) for _, svg in tiles]

    sheet = Image.new("RGBA", (layout.width, layout.height), (0, 0, 0, 0))
    for i, img in enumerate(images):
        if img.size != (layout.tile, layout.tile):
            img = img.resize((layout.tile, layout.tile), Image.Resampling.NEAREST)
        sheet.paste(img, layout.position(i))
    return sheet


def to_png_bytes(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def sheet_png(
    tiles: Sequence[Tuple[int, str]],
    tile: int,
    gap: int,
    cols: int,
    scale: int = DEFAULT_SCALE,
    rasterize: Rasterizer = rasterize_svg,
) -> Optional[bytes]:
    sheet = compose_sheet(tiles, tile, gap, cols, scale, rasterize)
    return None if sheet is None else to_png_bytes(sheet)


def svg_to_png(svg: str, out_px: int = SINGLE_EXPORT_PX, rasterize: Rasterizer = rasterize_svg) -> bytes:
    return to_png_bytes(rasterize(svg, out_px))


def single_filename(token_id) -> str:
    return f"letterskull-{token_id}.png"


def sheet_filename(count: int) -> str:
    return f"letterskull-gallery-{count}.png"
