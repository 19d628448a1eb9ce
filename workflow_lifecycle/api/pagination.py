"""
Opaque cursors for offset/limit pagination
"""

import base64
import binascii
import json
from typing import Optional, Tuple

from workflow_lifecycle.core.exceptions import InvalidCursorError


def encode_next_cursor(offset: int, limit: int, total: int) -> Optional[str]:
    """Cursor of the page after (offset, limit); None when it would be empty"""
    next_offset = offset + limit
    if next_offset >= total:
        return None

    raw = json.dumps({"offset": next_offset, "limit": limit}, separators=(",", ":"))
    return base64.urlsafe_b64encode(raw.encode()).decode()


def decode_cursor(cursor: str, max_limit: Optional[int] = None) -> Tuple[int, int]:
    """
    Decode a cursor produced by encode_next_cursor

    Returns:
        (offset, limit)

    Raises:
        InvalidCursorError: the cursor is not one of ours
    """
    try:
        data = json.loads(base64.urlsafe_b64decode(cursor.encode()).decode())
    except (binascii.Error, UnicodeDecodeError, ValueError):
        raise InvalidCursorError()

    if not isinstance(data, dict):
        raise InvalidCursorError()

    offset, limit = data.get("offset"), data.get("limit")
    if type(offset) is not int or type(limit) is not int or offset < 0 or limit < 1:
        raise InvalidCursorError()
    if max_limit is not None and limit > max_limit:
        raise InvalidCursorError(f"Cursor limit exceeds the maximum of {max_limit}")

    return offset, limit
