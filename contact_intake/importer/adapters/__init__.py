"""
Spreadsheet readers for bulk contact uploads.
"""

from .spreadsheet import (
    SUPPORTED_EXTENSIONS,
    SpreadsheetError,
    SpreadsheetHeaderError,
    SpreadsheetReader,
    SpreadsheetRow,
    UnsupportedSpreadsheetError,
    open_spreadsheet,
)

__all__ = [
    "SUPPORTED_EXTENSIONS",
    "SpreadsheetError",
    "SpreadsheetHeaderError",
    "SpreadsheetReader",
    "SpreadsheetRow",
    "UnsupportedSpreadsheetError",
    "open_spreadsheet",
]
