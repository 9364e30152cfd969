"""Tests for the SQL view response normalizer."""

from __future__ import annotations

import copy

import pytest

from dhis2_sqlview.errors import UnrecognizedResponseShape
from dhis2_sqlview.models import CanonicalTable
from dhis2_sqlview.normalizer import ResponseShape, detect_shape, normalize

HEADERS = [{"name": "uid"}, {"name": "name"}, {"name": "value"}]
GRID_ROWS = [["fbfJHSPpUQD", "ANC 1st visit", 12], ["cYeuwXTCPkU", "ANC 2nd visit", None]]
OBJECT_ROWS = [
    {"uid": "fbfJHSPpUQD", "name": "ANC 1st visit", "value": 12},
    {"uid": "cYeuwXTCPkU", "name": "ANC 2nd visit", "value": None},
]


def all_shapes() -> dict[ResponseShape, object]:
    return {
        ResponseShape.LIST_GRID: {"listGrid": {"headers": HEADERS, "rows": GRID_ROWS}},
        ResponseShape.GRID: {"headers": HEADERS, "rows": GRID_ROWS},
        ResponseShape.WRAPPED_OBJECTS: {"data": OBJECT_ROWS},
        ResponseShape.BARE_OBJECTS: OBJECT_ROWS,
    }


class TestDetectShape:
    """Shape detection order."""

    @pytest.mark.parametrize("shape", list(ResponseShape))
    def test_each_shape_detected(self, shape: ResponseShape) -> None:
        assert detect_shape(all_shapes()[shape]) is shape

    def test_list_grid_wins_over_top_level_grid(self) -> None:
        raw = {"listGrid": {"headers": HEADERS, "rows": GRID_ROWS}, "headers": [], "rows": []}
        assert detect_shape(raw) is ResponseShape.LIST_GRID

    def test_grid_wins_over_data(self) -> None:
        raw = {"headers": HEADERS, "rows": GRID_ROWS, "data": OBJECT_ROWS}
        assert detect_shape(raw) is ResponseShape.GRID

    def test_pager_does_not_affect_detection(self) -> None:
        raw = {"listGrid": {"headers": HEADERS, "rows": []}, "pager": {"page": 1, "pageCount": 1}}
        assert detect_shape(raw) is ResponseShape.LIST_GRID

    def test_unknown(self) -> None:
        assert detect_shape({"foo": 1}) is None
        assert detect_shape("text") is None
        assert detect_shape([1, 2, 3]) is None


class TestNormalize:
    """Normalization of each shape into a CanonicalTable."""

    def test_list_grid_scenario(self) -> None:
        table = normalize({"listGrid": {"headers": [{"name": "uid"}], "rows": [["abc"]]}})
        assert table.headers == ("uid",)
        assert table.rows == ({"uid": "abc"},)

    def test_shape_independence(self) -> None:
        tables = [normalize(raw) for raw in all_shapes().values()]
        first = tables[0]
        assert first.headers == ("uid", "name", "value")
        for table in tables[1:]:
            assert table == first

    def test_idempotent_and_input_untouched(self) -> None:
        for raw in all_shapes().values():
            before = copy.deepcopy(raw)
            assert normalize(raw) == normalize(raw)
            assert raw == before

    def test_column_header_key(self) -> None:
        table = normalize({"headers": [{"column": "ou"}, {"name": "value"}], "rows": [["a", 1]]})
        assert table.headers == ("ou", "value")

    def test_missing_header_name_synthesized(self) -> None:
        table = normalize({"headers": [{"name": "uid"}, {}, {"type": "TEXT"}], "rows": [["a", "b", "c"]]})
        assert table.headers == ("uid", "col_1", "col_2")
        assert table.rows[0]["col_2"] == "c"

    def test_duplicate_header_names_made_unique(self) -> None:
        table = normalize({"headers": [{"name": "x"}, {"name": "x"}], "rows": [[1, 2]]})
        assert table.headers == ("x", "x_1")
        assert table.rows[0] == {"x": 1, "x_1": 2}

    def test_renamed_duplicate_skips_taken_names(self) -> None:
        table = normalize({"headers": [{"name": "x"}, {"name": "x_2"}, {"name": "x"}], "rows": [[1, 2, 3]]})
        assert table.headers == ("x", "x_2", "x_3")
        assert table.rows[0] == {"x": 1, "x_2": 2, "x_3": 3}

    def test_short_row_padded_with_none(self) -> None:
        table = normalize({"headers": HEADERS, "rows": [["fbfJHSPpUQD"]]})
        assert table.rows[0] == {"uid": "fbfJHSPpUQD", "name": None, "value": None}

    def test_long_row_truncated(self) -> None:
        table = normalize({"headers": [{"name": "uid"}], "rows": [["a", "extra"]]})
        assert table.rows[0] == {"uid": "a"}

    def test_empty_rows_keep_headers(self) -> None:
        table = normalize({"listGrid": {"headers": HEADERS, "rows": []}})
        assert table.headers == ("uid", "name", "value")
        assert table.row_count == 0

    def test_null_rows_keep_headers(self) -> None:
        table = normalize({"headers": HEADERS, "rows": None})
        assert table.row_count == 0

    def test_object_union_of_keys_in_first_seen_order(self) -> None:
        table = normalize([{"a": 1}, {"b": 2, "a": 3}, {"c": 4}])
        assert table.headers == ("a", "b", "c")
        assert table.rows[0] == {"a": 1, "b": None, "c": None}
        assert table.rows[2] == {"a": None, "b": None, "c": 4}

    def test_nested_values_become_json_text(self) -> None:
        table = normalize({"data": [{"id": "x", "categoryCombo": {"name": "default", "id": "bjDvmb4bfuf"}}]})
        assert table.rows[0]["categoryCombo"] == '{"id": "bjDvmb4bfuf", "name": "default"}'

    def test_empty_array_is_empty_table(self) -> None:
        assert normalize([]) == CanonicalTable()

    def test_row_order_preserved(self) -> None:
        rows = [[str(i)] for i in range(50)]
        table = normalize({"headers": [{"name": "n"}], "rows": rows})
        assert table.column("n") == [str(i) for i in range(50)]


class TestUnrecognized:
    """Bodies that match no known shape."""

    def test_reports_top_level_keys_and_page(self) -> None:
        with pytest.raises(UnrecognizedResponseShape) as excinfo:
            normalize({"status": "ERROR", "message": "boom"}, page=3)
        assert excinfo.value.keys == ["message", "status"]
        assert excinfo.value.page == 3
        assert excinfo.value.details()["keys"] == ["message", "status"]

    def test_non_mapping_reports_type(self) -> None:
        with pytest.raises(UnrecognizedResponseShape) as excinfo:
            normalize("<html>")
        assert excinfo.value.keys == ["<str>"]

    def test_headers_not_a_list(self) -> None:
        with pytest.raises(UnrecognizedResponseShape):
            normalize({"headers": "uid", "rows": []})
