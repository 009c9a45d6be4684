from datetime import date, datetime

import openpyxl
import pytest

from contact_intake.importer.adapters.spreadsheet import (
    SpreadsheetHeaderError,
    SpreadsheetReader,
    UnsupportedSpreadsheetError,
    normalize_header,
)


def write_xlsx(path, rows):
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    workbook.save(path)
    return path


def test_csv_rows_use_canonical_core_columns(write_csv):
    path = write_csv(
        ["Phone Number", "E-mail", "First Name", "Surname", "City"],
        [["+919876543210", " Jane@Example.com ", "Jane", "Doe", "Pune"]],
    )

    rows = list(SpreadsheetReader(path).iter_rows())

    assert len(rows) == 1
    assert rows[0].values == {
        "phone": "+919876543210",
        "email": "Jane@Example.com",
        "first_name": "Jane",
        "last_name": "Doe",
        "City": "Pune",
    }
    assert rows[0].row_number == 2


def test_csv_blank_rows_are_skipped_and_not_counted(write_csv):
    path = write_csv(["email"], [["a@example.com"], [""], ["b@example.com"]])
    reader = SpreadsheetReader(path)

    rows = list(reader.iter_rows())

    assert reader.count_rows() == 2
    assert [row.row_number for row in rows] == [2, 3]
    assert [row.source_line for row in rows] == [2, 4]
    assert reader.statistics.rows_skipped_blank == 1


def test_csv_with_byte_order_mark(tmp_path):
    path = tmp_path / "bom.csv"
    path.write_text("\ufeffemail,first_name\na@example.com,Ann\n", encoding="utf-8")

    rows = list(SpreadsheetReader(path).iter_rows())

    assert rows[0].values == {"email": "a@example.com", "first_name": "Ann"}


def test_csv_missing_cells_are_omitted(write_csv):
    path = write_csv(["email", "phone", "tier"], [["a@example.com"]])

    rows = list(SpreadsheetReader(path).iter_rows())

    assert rows[0].values == {"email": "a@example.com"}


def test_duplicate_headers_are_rejected(write_csv):
    path = write_csv(["email", "Email Address"], [["a@example.com", "b@example.com"]])

    with pytest.raises(SpreadsheetHeaderError) as excinfo:
        SpreadsheetReader(path).count_rows()

    assert excinfo.value.duplicates == ("email",)


def test_empty_file_is_rejected(tmp_path):
    path = tmp_path / "empty.csv"
    path.write_text("", encoding="utf-8")

    with pytest.raises(SpreadsheetHeaderError):
        SpreadsheetReader(path).count_rows()


def test_unsupported_extension(tmp_path):
    with pytest.raises(UnsupportedSpreadsheetError):
        SpreadsheetReader(tmp_path / "contacts.txt")


def test_xlsx_values_are_typed(tmp_path):
    path = write_xlsx(
        tmp_path / "contacts.xlsx",
        [
            ["phone", "email", "Joined", "Score"],
            [9876543210, "a@example.com", datetime(2024, 1, 15), 7.5],
            [None, None, None, None],
            [919812345678.0, None, datetime(2024, 2, 1, 9, 30), 3],
        ],
    )
    reader = SpreadsheetReader(path)

    rows = list(reader.iter_rows())

    assert reader.count_rows() == 2
    assert rows[0].values == {
        "phone": 9876543210,
        "email": "a@example.com",
        "Joined": date(2024, 1, 15),
        "Score": 7.5,
    }
    assert rows[1].values["phone"] == 919812345678
    assert rows[1].values["Joined"] == datetime(2024, 2, 1, 9, 30)


def test_normalize_header():
    assert normalize_header("  First-Name ") == "first_name"
    assert normalize_header("E-mail") == "e_mail"
