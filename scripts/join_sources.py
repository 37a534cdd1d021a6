"""Natural join of normalized trial rows with normalized participant rows."""

import pandas as pd

from normalize_ids import KEY_COLUMNS, ROW_ORDER

SUFFIXES = ("_trial", "_participant")


def join(trials: pd.DataFrame, participants: pd.DataFrame) -> pd.DataFrame:
    """
    Inner join on (lab, subject).

    Trial rows without a participant key are dropped (the validator reports
    them). A key with several participant rows yields one merged row per
    (trial row, participant row) pair, so duplicated participants show up as
    extra rows instead of one being picked silently.

    Columns present on both sides, other than the key, get ``_trial`` /
    ``_participant`` suffixes.

    Args:
        trials: Normalized trial records
        participants: Normalized participant records

    Returns:
        Merged DataFrame in trial input order
    """
    merged = pd.merge(
        trials,
        participants,
        how="inner",
        on=KEY_COLUMNS,
        suffixes=SUFFIXES,
        sort=False,
    )

    order_cols = [ROW_ORDER + suffix for suffix in SUFFIXES]
    if all(col in merged.columns for col in order_cols):
        merged = merged.sort_values(order_cols, kind="mergesort")

    return merged.reset_index(drop=True)
