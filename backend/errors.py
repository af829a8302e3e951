# backend/errors.py
from __future__ import annotations


class LetterSkullError(Exception):
    status_code = 500

    def __init__(self, message: str, *, details=None):
        super().__init__(message)
        self.message = message
        self.details = details


class ConfigError(LetterSkullError, RuntimeError):
    pass


class TokenURIDecodeError(LetterSkullError, ValueError):
    """Envelope had the right prefix but its payload was not base64/UTF-8/JSON."""
    status_code = 502


class ChainReadError(LetterSkullError):
    status_code = 502


class IndexerError(LetterSkullError):
    status_code = 500


class MintError(LetterSkullError):
    status_code = 409


class MintDisabled(MintError):
    status_code = 503


class WrongNetwork(MintError):
    status_code = 409
