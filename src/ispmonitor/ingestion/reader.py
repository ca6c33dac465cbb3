"""Spreadsheet reading for source exports (first sheet only)."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable

import pandas as pd

from ..errors import UnsupportedFileError
from .classifier import FileProfile, header_row_for


EXCEL_SUFFIXES = {".xlsx", ".xlsm", ".xls"}
DELIMITED_SUFFIXES = {".csv"}

# Only truly empty cells are missing; "NA" is the Napoli province code
READ_NA_OPTIONS = {"keep_default_na": False, "na_values": [""]}


def validate_extension(path: Path, allowed: Iterable[str]) -> None:
    allowed_set = {ext.lower() for ext in allowed}
    if path.suffix.lower() not in allowed_set:
        raise UnsupportedFileError(f"Unsupported file extension '{path.suffix}' for {path.name}")


def read_input_file(path: Path, profile: FileProfile) -> pd.DataFrame:
    """Read the first sheet of an export into a DataFrame.

    Native cell types are preserved (dates arrive as timestamps, numbers as
    numbers) so coercion can tell Excel serials from text. Site-inventory
    sheets use the second row as header.
    """
    header = header_row_for(profile)
    suffix = path.suffix.lower()
    if suffix in EXCEL_SUFFIXES:
        try:
            frame = pd.read_excel(path, sheet_name=0, header=header, **READ_NA_OPTIONS)
        except Exception as exc:
            raise UnsupportedFileError(f"Failed to read Excel file {path}: {exc}") from exc
    elif suffix in DELIMITED_SUFFIXES:
        try:
            frame = pd.read_csv(path, sep=None, engine="python", header=header, **READ_NA_OPTIONS)
        except Exception as exc:
            raise UnsupportedFileError(f"Failed to read delimited file {path}: {exc}") from exc
    else:
        raise UnsupportedFileError(f"Unsupported input file extension for {path}")

    frame.columns = [str(c).strip() for c in frame.columns]
    return frame.dropna(how="all")
