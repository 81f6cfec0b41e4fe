"""
Load laboratory digest measurements from Excel workbooks.

Each fire severity sample lives on its own worksheet. Sheet names do not
reliably match sample labels, so the label is taken from the sheet contents:
the last non-blank cell in the label column is the sample label (cells above
it are headers or comments). Data rows are the rows whose label cell equals
that sample label.
"""

from os import PathLike
from pathlib import Path

import pandas as pd
from beartype import beartype
from beartype.typing import Any, List, Optional, Sequence
from openpyxl import load_workbook
from openpyxl.utils import column_index_from_string
from openpyxl.worksheet.worksheet import Worksheet

from firecarbon.errors import DataLoadError
from firecarbon.logging import configure_logging

__all__ = [
    "DIGEST_COLUMNS",
    "column_letter_to_index",
    "load_digest_data",
    "read_sheet_digest",
]

logger = configure_logging(__name__)

DIGEST_COLUMNS = ["label", "position", "x"]


@beartype
def column_letter_to_index(letter: str) -> int:
    """
    Convert an Excel column label to a 1-based column index.

    Examples:
        >>> column_letter_to_index("B")
        2
        >>> column_letter_to_index("AA")
        27
    """
    try:
        return column_index_from_string(letter.strip().upper())
    except ValueError as e:
        raise DataLoadError(f"invalid column letter: {letter!r}") from e


def _cell_text(value: Any) -> str:
    # blank cells come back as None
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


@beartype
def last_label(labels: Sequence[str]) -> Optional[str]:
    """Last entry that is not blank after stripping whitespace."""
    for label in reversed(labels):
        if label.strip():
            return label
    return None


@beartype
def read_sheet_digest(
    worksheet: Worksheet,
    label_col: str = "B",
    position_col: str = "C",
    data_col: str = "D",
) -> pd.DataFrame:
    """
    Extract the digest rows of a single worksheet.

    Args:
        worksheet: An openpyxl worksheet.
        label_col: Column letter holding sample labels.
        position_col: Column letter holding the replicate position.
        data_col: Column letter holding the measured value.

    Returns:
        DataFrame with string columns ``label``, ``position`` and ``x`` in
        sheet row order.

    Raises:
        DataLoadError: If the label column holds no non-blank cell.
    """
    label_idx = column_letter_to_index(label_col)
    position_idx = column_letter_to_index(position_col)
    data_idx = column_letter_to_index(data_col)

    rows = [
        (
            _cell_text(row[label_idx - 1]),
            _cell_text(row[position_idx - 1]),
            _cell_text(row[data_idx - 1]),
        )
        for row in worksheet.iter_rows(
            min_col=1,
            max_col=max(label_idx, position_idx, data_idx),
            values_only=True,
        )
    ]

    sample_label = last_label([label for label, _, _ in rows])
    if sample_label is None:
        raise DataLoadError(
            f"worksheet {worksheet.title!r} has no non-blank label in "
            f"column {label_col}"
        )
    logger.info(f"sheet {worksheet.title!r}: {sample_label}")

    return pd.DataFrame(
        [row for row in rows if row[0] == sample_label],
        columns=DIGEST_COLUMNS,
        dtype=str,
    )


@beartype
def load_digest_data(
    xls_path: PathLike | str,
    sheets: Sequence[int],
    label_col: str = "B",
    position_col: str = "C",
    data_col: str = "D",
) -> pd.DataFrame:
    """
    Load digest data from several worksheets of a workbook.

    Args:
        xls_path: Path to an ``.xlsx`` workbook.
        sheets: 1-based worksheet indices, in the order they are read.
        label_col: Column letter holding sample labels.
        position_col: Column letter holding the replicate position.
        data_col: Column letter holding the measured value.

    Returns:
        Concatenated ``label``, ``position``, ``x`` rows of all sheets.

    Raises:
        DataLoadError: If the workbook or a requested sheet does not exist,
            or a sheet has no sample label.
    """
    xls_path = Path(xls_path)
    if not xls_path.is_file():
        raise DataLoadError(f"workbook not found: {xls_path}")

    workbook = load_workbook(xls_path, data_only=True)
    try:
        worksheets = workbook.worksheets
        frames: List[pd.DataFrame] = []
        for sheet in sheets:
            if not 1 <= sheet <= len(worksheets):
                raise DataLoadError(
                    f"{xls_path} has {len(worksheets)} worksheets, "
                    f"sheet {sheet} requested"
                )
            frames.append(
                read_sheet_digest(
                    worksheets[sheet - 1],
                    label_col=label_col,
                    position_col=position_col,
                    data_col=data_col,
                )
            )
    finally:
        workbook.close()

    if not frames:
        return pd.DataFrame(columns=DIGEST_COLUMNS, dtype=str)
    return pd.concat(frames, ignore_index=True)
