"""Public key helpers for the follow graph."""

from __future__ import annotations

import re
from typing import Iterable, Sequence

_HEX_PUBKEY = re.compile(r"^[0-9a-f]{64}$")


def is_valid_pubkey(value: object) -> bool:
    """True if ``value`` is a 32-byte public key in lowercase hex."""
    return isinstance(value, str) and bool(_HEX_PUBKEY.fullmatch(value))


def normalize_pubkey(value: str) -> str:
    """Lowercase and strip a hex public key. Does not validate."""
    return value.strip().lower()


def filter_valid_p_tags(tags: Iterable[Sequence[str]]) -> list[str]:
    """Extract valid pubkeys from ``["p", <pubkey>, ...]`` tags.

    Order is preserved and duplicates are dropped. Tags with a malformed or
    missing key are ignored.
    """
    seen: set[str] = set()
    result: list[str] = []
    for tag in tags:
        if len(tag) < 2 or tag[0] != "p":
            continue
        pubkey = tag[1]
        if not is_valid_pubkey(pubkey) or pubkey in seen:
            continue
        seen.add(pubkey)
        result.append(pubkey)
    return result
