# mint/wallet_io.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Optional, Tuple

WALLET_JSON = Path(__file__).with_name("wallet.json")


def load_wallet(path: Path = WALLET_JSON) -> Tuple[Optional[str], Optional[str]]:
    """
    Load the signing wallet as (private_key, address) from mint/wallet.json.
    Returns (None, None) when the file does not exist.
    """
    if not path.exists():
        return None, None
    obj = json.loads(path.read_text(encoding="utf-8"))
    pk = obj.get("private_key") or obj.get("PRIVATE_KEY")
    addr = obj.get("address") or obj.get("PUBLIC_ADDRESS")
    if pk and not pk.startswith("0x"):
        pk = "0x" + pk
    return pk, addr
