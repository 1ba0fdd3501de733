"""pagination.py — Page shaping and opaque continuation tokens.

All listings page the same way: a token is the URL-safe base64 JSON of the
primary key of the last item handed out. Passing it back resumes the scan
right after that item.
"""
from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from compass_events.config import DEFAULT_PAGE_SIZE
from compass_events.errors import ValidationError

__all__ = [
    "Page",
    "decode_token",
    "encode_token",
    "parse_limit",
]


@dataclass
class Page:
    items: List[Dict[str, Any]]
    limit: int
    next_token: Optional[str] = None

    @property
    def has_more(self) -> bool:
        return self.next_token is not None

    def to_dict(self) -> Dict[str, Any]:
        meta: Dict[str, Any] = {
            "item_count": len(self.items),
            "items_per_page": self.limit,
            "next_page_token": self.next_token,
        }
        return {"items": self.items, "meta": meta}


def parse_limit(raw: Any, default: int = DEFAULT_PAGE_SIZE) -> int:
    """Validate a page size. None/'' means default; anything else must be a positive integer."""
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return default
    if isinstance(raw, bool):
        raise ValidationError("limit must be a positive integer.")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str) and raw.strip().isdecimal():
        # isdecimal rejects superscripts and other digits int() cannot parse
        value = int(raw.strip())
    else:
        raise ValidationError("limit must be a positive integer.")
    if value < 1:
        raise ValidationError("limit must be a positive integer.")
    return value


def encode_token(key: Optional[Dict[str, Any]]) -> Optional[str]:
    if not key:
        return None
    raw = json.dumps(key, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_token(token: Optional[str]) -> Optional[Dict[str, Any]]:
    if token is None or not str(token).strip():
        return None
    try:
        padded = str(token).strip()
        padded += "=" * (-len(padded) % 4)
        key = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise ValidationError("Invalid pagination token.") from exc
    if not isinstance(key, dict) or not key:
        raise ValidationError("Invalid pagination token.")
    return key
