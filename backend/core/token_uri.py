# backend/core/token_uri.py
"""
On-chain metadata envelopes.

tokenURI() returns `data:application/json;base64,<json>` whose JSON carries an
`image` field that is itself `data:image/svg+xml;base64,<svg>`. Anything that
does not start with the exact JSON prefix is not ours to decode and yields None.
"""
from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Dict, Optional

from errors import TokenURIDecodeError

JSON_PREFIX = "data:application/json;base64,"
SVG_PREFIX = "data:image/svg+xml;base64,"

_WHITESPACE = str.maketrans("", "", " \t\n\r\f")


def decode_base64_text(b64: str) -> str:
    """Standard-alphabet base64 -> UTF-8 text. Multi-byte sequences are kept intact."""
    compact = b64.translate(_WHITESPACE)
    compact += "=" * (-len(compact) % 4)
    try:
        raw = base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise TokenURIDecodeError(f"Invalid base64 payload: {exc}") from exc
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise TokenURIDecodeError(f"Payload is not valid UTF-8: {exc}") from exc


def decode_metadata(token_uri: str) -> Optional[Dict[str, Any]]:
    if not isinstance(token_uri, str) or not token_uri.startswith(JSON_PREFIX):
        return None
    text = decode_base64_text(token_uri[len(JSON_PREFIX):])
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise TokenURIDecodeError(f"Metadata is not valid JSON: {exc}") from exc
    return parsed if isinstance(parsed, dict) else None


def parse_token_uri_to_svg(token_uri: str) -> Optional[str]:
    meta = decode_metadata(token_uri)
    if meta is None:
        return None

    image = meta.get("image")
    if not isinstance(image, str) or not image:
        return None
    if image.startswith(SVG_PREFIX):
        return decode_base64_text(image[len(SVG_PREFIX):])
    return None


def svg_data_uri(svg: str) -> str:
    return SVG_PREFIX + base64.b64encode(svg.encode("utf-8")).decode("ascii")


def encode_token_uri(meta: Dict[str, Any]) -> str:
    j = json.dumps(meta, ensure_ascii=False, separators=(",", ":"))
    return JSON_PREFIX + base64.b64encode(j.encode("utf-8")).decode("ascii")
