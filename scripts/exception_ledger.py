"""
Exception ledger: (lab, subject) pairs known to exist in only one source.

The ledger is a table with columns ``subject``, ``lab`` and ``Confirmed``; a
row suppresses its key from the unmatched report only when ``Confirmed`` is
"X". Ledger identifiers are compared after the generic canonicalization
(lowercase, alphanumerics only); the rule table is not applied to them, since
the ledger is kept against normalized keys.
"""

from typing import FrozenSet, Optional

import pandas as pd

from load_sources import read_table
from normalize_ids import NormalizedKey, canonicalize

CONFIRMED_MARK = "X"
LEDGER_COLUMNS = ["lab", "subject", "confirmed", "lab_raw", "subject_raw"]


def empty_ledger() -> pd.DataFrame:
    return pd.DataFrame({col: pd.Series(dtype=bool if col == "confirmed" else object)
                         for col in LEDGER_COLUMNS})


def load_ledger(filepath: Optional[str]) -> pd.DataFrame:
    """
    Load the exception ledger.

    Args:
        filepath: CSV/TSV/XLSX file, or None for an empty ledger

    Returns:
        DataFrame with canonical ``lab``/``subject``, boolean ``confirmed``
        and the identifiers as written in ``lab_raw``/``subject_raw``

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If required columns are missing
    """
    if filepath is None:
        return empty_ledger()

    df = read_table(filepath)

    # Column headers are matched case-insensitively ("Confirmed" vs "confirmed")
    by_lower = {col.lower(): col for col in df.columns}
    required_cols = ['subject', 'lab', 'confirmed']
    missing_cols = [col for col in required_cols if col not in by_lower]
    if missing_cols:
        raise ValueError(f"Exception ledger is missing required columns: {missing_cols}")

    raw_labs = df[by_lower['lab']].fillna("").astype(str)
    raw_subjects = df[by_lower['subject']].fillna("").astype(str)
    marks = df[by_lower['confirmed']].fillna("").astype(str).str.strip().str.upper()

    ledger = pd.DataFrame({
        "lab": raw_labs.map(canonicalize),
        "subject": raw_subjects.map(canonicalize),
        "confirmed": marks == CONFIRMED_MARK,
        "lab_raw": raw_labs,
        "subject_raw": raw_subjects,
    })
    return ledger[LEDGER_COLUMNS].reset_index(drop=True)


def confirmed_keys(ledger: pd.DataFrame) -> FrozenSet[NormalizedKey]:
    """Keys whose one-sided presence is accepted."""
    confirmed = ledger[ledger["confirmed"]]
    return frozenset(NormalizedKey(lab, subject)
                     for lab, subject in zip(confirmed["lab"], confirmed["subject"]))
