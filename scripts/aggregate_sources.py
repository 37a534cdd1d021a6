"""
Per-key summaries of each normalized source, used only to validate the merge.

Trial summaries:       n_trials (distinct trial_num), n_rows, trial_error (last row)
Participant summaries: n_rows, age, notes, session_error (first row)

"First" and "last" follow input order (the ``row_order`` column), never the
order pandas happens to hold rows in, and keep missing values as they are.
"""

import pandas as pd

from id_rules import PARTICIPANT, TRIAL
from normalize_ids import KEY_COLUMNS, ROW_ORDER

TRIAL_NUM = "trial_num"
TRIAL_ERROR = "trial_error"
AGE = "age"
NOTES = "notes"
SESSION_ERROR = "session_error"

TRIAL_AGGREGATE_COLUMNS = ["n_trials", "n_rows", TRIAL_ERROR]
PARTICIPANT_AGGREGATE_COLUMNS = ["n_rows", AGE, NOTES, SESSION_ERROR]


def in_input_order(records: pd.DataFrame) -> pd.DataFrame:
    """Stable sort on ``row_order`` when present."""
    if ROW_ORDER in records.columns:
        return records.sort_values(ROW_ORDER, kind="mergesort")
    return records


def _pick(records: pd.DataFrame, columns, keep: str) -> pd.DataFrame:
    """First or last row per key for ``columns``; columns absent from the source come back empty."""
    picked = records.drop_duplicates(KEY_COLUMNS, keep=keep).set_index(KEY_COLUMNS)
    return picked.reindex(columns=columns)


def aggregate_trials(records: pd.DataFrame) -> pd.DataFrame:
    if TRIAL_NUM not in records.columns:
        raise ValueError(f"Trial records must contain a '{TRIAL_NUM}' column")

    ordered = in_input_order(records)
    grouped = ordered.groupby(KEY_COLUMNS, sort=True)

    summary = pd.DataFrame({
        "n_trials": grouped[TRIAL_NUM].nunique(),
        "n_rows": grouped.size(),
    })
    last = _pick(ordered, [TRIAL_ERROR], keep="last")
    summary[TRIAL_ERROR] = last[TRIAL_ERROR].reindex(summary.index)

    return summary[TRIAL_AGGREGATE_COLUMNS]


def aggregate_participants(records: pd.DataFrame) -> pd.DataFrame:
    ordered = in_input_order(records)
    grouped = ordered.groupby(KEY_COLUMNS, sort=True)

    summary = pd.DataFrame({"n_rows": grouped.size()})
    first = _pick(ordered, [AGE, NOTES, SESSION_ERROR], keep="first")
    for col in (AGE, NOTES, SESSION_ERROR):
        summary[col] = first[col].reindex(summary.index)

    return summary[PARTICIPANT_AGGREGATE_COLUMNS]


def aggregate(records: pd.DataFrame, source_type: str) -> pd.DataFrame:
    """
    Group normalized records by (lab, subject) and summarize each key.

    Args:
        records: Normalized records (output of normalize_ids.normalize_frame)
        source_type: 'trial' or 'participant'

    Returns:
        DataFrame indexed by (lab, subject), sorted by key
    """
    missing_cols = set(KEY_COLUMNS) - set(records.columns)
    if missing_cols:
        raise ValueError(f"Missing required columns: {missing_cols}")

    if source_type == TRIAL:
        return aggregate_trials(records)
    if source_type == PARTICIPANT:
        return aggregate_participants(records)
    raise ValueError(f"Unknown source type '{source_type}'")
