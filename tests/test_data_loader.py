"""Tests for sheet loading and row normalization."""

from datetime import date

import pandas as pd
import pytest

from masterplan.data_loader import (
    SAMPLE_ROWS,
    is_blank,
    load_production_sheet,
    normalize_row,
    normalize_rows,
    parse_due_date,
    parse_flag,
    parse_number,
    resolve_column,
)
from masterplan.errors import FileLoadError, ValidationError


class TestParseNumber:
    """Locale-ambiguous number parsing."""

    @pytest.mark.parametrize("raw,expected", [
        ("1.234,56", 1234.56),
        ("1,234.56", 1234.56),
        ("$1,0640", 1.064),
        ("1234,5", 1234.5),
        ("1234.5", 1234.5),
        ("€ 2.500", 2.5),
        ("  42 ", 42.0),
        (21000, 21000.0),
        (3.5, 3.5),
    ])
    def test_parses(self, raw, expected):
        assert parse_number(raw) == pytest.approx(expected)

    @pytest.mark.parametrize("raw", ["", "abc", None, float("nan"), "1,234,567", [1, 2]])
    def test_unparseable_is_zero(self, raw):
        assert parse_number(raw) == 0.0

    @pytest.mark.parametrize("raw", ["inf", "-Infinity", "1e400", float("inf"), 10 ** 400, "1_000"])
    def test_non_finite_and_underscored_are_zero(self, raw):
        assert parse_number(raw) == 0.0


class TestParseFlag:
    """Stringly-typed process flags."""

    @pytest.mark.parametrize("raw", ["TRUE", "true", "1", "SÍ", "sí", "SI", " si ", True, 1, 1.0])
    def test_true_values(self, raw):
        assert parse_flag(raw) is True

    @pytest.mark.parametrize("raw", ["FALSE", "0", "NO", "X", "", None, False, 0, 2, float("nan")])
    def test_false_values(self, raw):
        assert parse_flag(raw) is False


class TestHelpers:
    """Blank detection, alias resolution and date parsing."""

    def test_is_blank(self):
        assert is_blank(None)
        assert is_blank("   ")
        assert is_blank(float("nan"))
        assert is_blank(pd.NaT)
        assert not is_blank(0)
        assert not is_blank("x")

    def test_first_non_blank_alias_wins(self):
        row = {"PO": "", "PO_ID": None, "PEDIDO": "555", "ORDER": "999"}
        assert resolve_column(row, ("PO", "PO_ID", "PEDIDO", "ORDER")) == "555"

    def test_alias_matching_is_case_sensitive(self):
        assert resolve_column({"po": "1"}, ("PO",)) is None

    def test_due_date_formats(self):
        assert parse_due_date("2025-01-15") == date(2025, 1, 15)
        assert parse_due_date(pd.Timestamp("2025-02-01")) == date(2025, 2, 1)
        assert parse_due_date(date(2025, 3, 1)) == date(2025, 3, 1)
        assert parse_due_date("not a date") is None
        assert parse_due_date("") is None


class TestNormalizeRow:
    """Single-row normalization."""

    def test_explicit_row(self, explicit_row, constants):
        normalized = normalize_row(explicit_row, 2, constants)
        item = normalized.item
        assert item.order_id == "100"
        assert item.project == "BAG A"
        assert item.material == "PP"
        assert normalized.flags["print"] is True
        assert normalized.flags["die_cut"] is True
        assert normalized.flags["varnish"] is False
        assert normalized.has_any_flag

    def test_blank_position_falls_back_to_row_number(self, explicit_row, constants):
        normalized = normalize_row(explicit_row, 7, constants)
        assert normalized.item.position == 7
        assert normalized.item.item_id == "100-7"

    def test_row_without_identity_is_dropped(self, constants):
        assert normalize_row({"MATERIAL": "PP", "QTY": "100"}, 2, constants) is None

    def test_infinite_numbers_default_to_zero(self, constants):
        row = {"PO": "100", "PROYECTO": "BAG", "CANTIDAD": "inf", "PLIEGOS": "1e400", "POS": "Infinity"}
        normalized = normalize_row(row, 5, constants)
        assert normalized.item.quantity == 0
        assert normalized.item.sheets == 0
        assert normalized.item.position == 0

    @pytest.mark.parametrize("row", [
        {"PO": "9"},
        {"PROYECTO": "ONLY PROJECT"},
        {"POS": "10"},
    ])
    def test_any_identifying_field_is_enough(self, row, constants):
        assert normalize_row(row, 2, constants) is not None

    def test_numeric_fields_and_excel_ids(self, constants):
        row = {
            "PEDIDO": 1402048642.0,
            "POS": "10",
            "CTD PEDIDO": "21.000,00",
            "PLIEGOS": "1,050",
            "$ / UND": "$0,25",
            "F PRD": "2025-01-15",
        }
        item = normalize_row(row, 2, constants).item
        assert item.order_id == "1402048642"
        assert item.position == 10
        assert item.quantity == 21000
        assert item.sheets == 1
        assert item.unit_price == pytest.approx(0.25)
        assert item.due_date == date(2025, 1, 15)

    def test_unparseable_numbers_default_to_zero(self, constants):
        item = normalize_row({"PO": "1", "QTY": "lots", "PLIEGOS": "n/a"}, 2, constants).item
        assert item.quantity == 0
        assert item.sheets == 0

    @pytest.mark.parametrize("raw,expected", [
        ("COMPLETED", "completed"),
        ("in process", "in_progress"),
        ("CANCELED", "cancelled"),
        ("", "pending"),
        ("SOMETHING", "pending"),
    ])
    def test_update_status(self, raw, expected, constants):
        normalized = normalize_row({"PO": "1", "UPDATE": raw}, 2, constants)
        assert normalized.update_status == expected

    def test_non_mapping_raises(self, constants):
        with pytest.raises(ValidationError):
            normalize_row(["PO", "1"], 2, constants)


class TestNormalizeRows:
    """Whole-sheet normalization with skip accounting."""

    def test_bad_rows_are_skipped_and_counted(self, explicit_row, fallback_row, constants):
        rows = [explicit_row, {"MATERIAL": "PP"}, "garbage", fallback_row]
        result = normalize_rows(rows, constants)
        assert result.total_rows == 4
        assert [i.order_id for i in result.items] == ["100", "101"]
        assert result.skipped_count == 2
        assert [s.row_number for s in result.skipped] == [3, 4]

    def test_sample_rows(self, constants):
        result = normalize_rows(SAMPLE_ROWS, constants)
        assert len(result.items) == 3
        assert result.skipped_count == 0
        assert result.duplicate_ids == []
        assert result.items[1].material == "COUCHE"

    def test_overflowing_quantity_keeps_row(self, constants):
        result = normalize_rows([{"PO": "100", "PROYECTO": "BAG", "CANTIDAD": "inf"}], constants)
        assert result.skipped_count == 0
        assert result.items[0].quantity == 0

    def test_repeated_item_is_reported(self, constants, caplog):
        rows = [
            {"PO": "100", "POS": "10", "PROYECTO": "BAG"},
            {"PO": "100", "POS": "20", "PROYECTO": "BAG"},
            {"PO": "100", "POS": "10", "PROYECTO": "BAG AGAIN"},
        ]
        with caplog.at_level("WARNING", logger="masterplan"):
            result = normalize_rows(rows, constants)
        assert len(result.items) == 3
        assert result.duplicate_ids == ["100-10"]
        assert "Row 4 repeats item 100-10 from row 2" in caplog.text


class TestLoadProductionSheet:
    """Reading CSV and Excel files."""

    def test_csv_keeps_text(self, tmp_path):
        path = tmp_path / "orders.csv"
        path.write_text("PO,PROYECTO,CTD PEDIDO\n100,BAG A,\"1.234,5\"\n", encoding="utf-8")
        rows = load_production_sheet(path)
        assert rows == [{"PO": "100", "PROYECTO": "BAG A", "CTD PEDIDO": "1.234,5"}]
        assert normalize_rows(rows).items[0].quantity == 1234

    def test_csv_from_bytes(self):
        rows = load_production_sheet(b"PO,PROYECTO\n7,X\n", filename="upload.csv")
        assert rows[0]["PO"] == "7"

    def test_excel_prefers_production_sheet(self, tmp_path):
        path = tmp_path / "orders.xlsx"
        with pd.ExcelWriter(path) as writer:
            pd.DataFrame({"NOTE": ["ignore"]}).to_excel(writer, sheet_name="Resumen", index=False)
            pd.DataFrame({"PEDIDO": ["200"], "PROYECTO": ["BOX"]}).to_excel(
                writer, sheet_name="PROCESOS PRD", index=False
            )
        rows = load_production_sheet(path)
        assert normalize_rows(rows).items[0].order_id == "200"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileLoadError):
            load_production_sheet(tmp_path / "missing.xlsx")
