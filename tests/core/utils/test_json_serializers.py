"""Tests for core.utils.json_serializers."""

import json
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path

from core.utils.json_serializers import json_serializer


class Color(Enum):
    RED = "red"


class SampleObj:
    def __init__(self, x, y):
        self.x = x
        self.y = y


# =========================================================================
# json_serializer
# =========================================================================


class TestJsonSerializer:

    def test_serializes_datetime_to_isoformat(self):
        assert json_serializer(datetime(2025, 6, 15, 10, 30, 0)) == "2025-06-15T10:30:00"

    def test_serializes_aware_datetime(self):
        assert json_serializer(datetime(2025, 6, 15, tzinfo=UTC)) == "2025-06-15T00:00:00+00:00"

    def test_serializes_date(self):
        assert json_serializer(date(2025, 6, 15)) == "2025-06-15"

    def test_serializes_decimal_to_float(self):
        assert json_serializer(Decimal("1.5")) == 1.5

    def test_serializes_path_to_string(self):
        assert json_serializer(Path("/tmp/x")) == "/tmp/x"

    def test_decodes_bytes_with_replacement(self):
        assert json_serializer(b"ok\xff") == "ok\ufffd"

    def test_sorts_sets(self):
        assert json_serializer({"b", "a"}) == ["a", "b"]

    def test_serializes_enum_value(self):
        assert json_serializer(Color.RED) == "red"

    def test_serializes_object_dict(self):
        assert json_serializer(SampleObj(1, 2)) == {"x": 1, "y": 2}

    def test_works_as_json_default(self):
        payload = {"at": datetime(2025, 1, 1), "raw": b"abc"}
        assert json.loads(json.dumps(payload, default=json_serializer)) == {
            "at": "2025-01-01T00:00:00",
            "raw": "abc",
        }
