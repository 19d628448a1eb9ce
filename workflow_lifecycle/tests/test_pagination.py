"""
Tests for list cursors
"""

import base64

import pytest

from workflow_lifecycle.api.pagination import decode_cursor, encode_next_cursor
from workflow_lifecycle.core.exceptions import InvalidCursorError


class TestCursors:
    """Test cursor encoding and validation"""

    def test_next_cursor_points_at_following_page(self):
        cursor = encode_next_cursor(offset=0, limit=10, total=25)

        assert decode_cursor(cursor) == (10, 10)

    def test_last_page_has_no_cursor(self):
        assert encode_next_cursor(offset=20, limit=10, total=25) is None
        assert encode_next_cursor(offset=0, limit=10, total=10) is None
        assert encode_next_cursor(offset=0, limit=10, total=0) is None

    @pytest.mark.parametrize(
        "raw",
        [
            b"not json",
            b"[1, 2]",
            b'{"offset": -1, "limit": 10}',
            b'{"offset": 0, "limit": 0}',
            b'{"offset": "0", "limit": 10}',
            b'{"offset": true, "limit": 10}',
        ],
    )
    def test_malformed_cursor_is_rejected(self, raw):
        cursor = base64.urlsafe_b64encode(raw).decode()

        with pytest.raises(InvalidCursorError) as exc_info:
            decode_cursor(cursor)

        assert exc_info.value.status_code == 400

    def test_garbage_is_rejected(self):
        with pytest.raises(InvalidCursorError):
            decode_cursor("%%%")

    def test_limit_above_maximum_is_rejected(self):
        cursor = encode_next_cursor(offset=0, limit=500, total=1000)

        with pytest.raises(InvalidCursorError):
            decode_cursor(cursor, max_limit=250)
