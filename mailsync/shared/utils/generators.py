"""Identifiers for rows, jobs and lock ownership (CUID2)."""

from cuid2 import Cuid

_ids = Cuid(length=24)
_tokens = Cuid(length=32)


def generate_cuid() -> str:
    """Row id or job id."""
    return _ids.generate()


def generate_lock_token() -> str:
    """Token proving ownership of a provider lock; only its holder may release it."""
    return _tokens.generate()
