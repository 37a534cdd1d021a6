"""
Read site files into canonical-column DataFrames.

Every value is read as a string; blank cells become NaN. Each row records the
file it came from in ``origin_file`` and its position across all files of the
source in ``row_order``.
"""

import json
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pandas as pd

from normalize_ids import KEY_COLUMNS, ROW_ORDER

ORIGIN_FILE = "origin_file"

EXCEL_SUFFIXES = {".xlsx"}
TAB_SUFFIXES = {".tsv", ".txt"}


def read_table(filepath: str) -> pd.DataFrame:
    """
    Read a CSV, TSV or Excel file with every column as string.

    Args:
        filepath: Path to the file

    Returns:
        DataFrame with cleaned column names and an ``origin_file`` column

    Raises:
        FileNotFoundError: If the file doesn't exist
    """
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {filepath}")

    suffix = path.suffix.lower()
    if suffix in EXCEL_SUFFIXES:
        df = pd.read_excel(path, dtype=str)
    else:
        sep = '\t' if suffix in TAB_SUFFIXES else ','
        try:
            df = pd.read_csv(path, sep=sep, dtype=str, encoding='utf-8-sig')
        except UnicodeDecodeError:
            print(f" - UnicodeDecodeError reading {path.name}, trying latin-1...", file=sys.stderr)
            df = pd.read_csv(path, sep=sep, dtype=str, encoding='latin-1')

    # Clean column names (remove BOM and strip whitespace)
    df.columns = df.columns.astype(str).str.replace('\ufeff', '', regex=False).str.strip()
    df[ORIGIN_FILE] = path.name
    return df


def load_column_map(filepath: str) -> Dict[str, str]:
    """Load a JSON object mapping site-specific column labels to canonical names."""
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Column map not found: {filepath}")

    with open(path, 'r', encoding='utf-8') as f:
        mapping = json.load(f)

    if not isinstance(mapping, dict) or not all(isinstance(v, str) for v in mapping.values()):
        raise ValueError(f"Column map {path.name} must be an object of label -> canonical name")
    return mapping


def apply_column_map(df: pd.DataFrame, mapping: Optional[Dict[str, str]]) -> pd.DataFrame:
    """
    Rename site-specific columns to canonical names.

    Labels are compared case-insensitively after stripping whitespace. Columns
    without an entry keep their name.
    """
    if not mapping:
        return df

    lookup = {label.strip().lower(): canonical for label, canonical in mapping.items()}
    renames = {col: lookup[col.strip().lower()] for col in df.columns if col.strip().lower() in lookup}

    renamed = [renames.get(col, col) for col in df.columns]
    duplicates = sorted({col for col in renamed if renamed.count(col) > 1})
    if duplicates:
        raise ValueError(f"Column map produces duplicate columns: {duplicates}")

    return df.rename(columns=renames)


def load_source(filepaths: Iterable[str], column_map: Optional[Dict[str, str]] = None,
                required: Iterable[str] = KEY_COLUMNS) -> pd.DataFrame:
    """
    Read and concatenate all files of one source, in the order given.

    Args:
        filepaths: Files of the source
        column_map: Optional label -> canonical column mapping
        required: Canonical columns every file must provide

    Returns:
        Concatenated DataFrame with ``origin_file`` and ``row_order`` columns

    Raises:
        ValueError: If no files are given or a file lacks a required column
    """
    frames: List[pd.DataFrame] = []
    required = list(required)
    for filepath in filepaths:
        df = apply_column_map(read_table(filepath), column_map)
        missing_cols = [col for col in required if col not in df.columns]
        if missing_cols:
            raise ValueError(f"Missing required columns in {Path(filepath).name}: {missing_cols}")
        frames.append(df)

    if not frames:
        raise ValueError("No input files given")

    combined = pd.concat(frames, ignore_index=True, sort=False)
    combined[ROW_ORDER] = range(len(combined))
    return combined
