"""
Post-merge conservation check.

For every key present in both pre-merge aggregates (and not reported as
unconfirmed), the merged table must hold exactly as many rows and distinct
trials as the trial source did. Anything else means the join is unsound for
this input and the run must stop before writing a merged table.
"""

from typing import FrozenSet, List

import pandas as pd

from aggregate_sources import TRIAL_NUM
from normalize_ids import KEY_COLUMNS, NormalizedKey


class MergeIntegrityError(Exception):
    """The merged table is inconsistent with its own inputs."""

    def __init__(self, message: str, keys: List[NormalizedKey] = None):
        super().__init__(message)
        self.keys = list(keys or [])


class DuplicateParticipantError(MergeIntegrityError):
    """A matched key has more than one participant row, inflating the merge."""


def recount(merged: pd.DataFrame) -> pd.DataFrame:
    """Per-key row and distinct-trial counts over the merged table."""
    trial_col = TRIAL_NUM if TRIAL_NUM in merged.columns else TRIAL_NUM + "_trial"
    grouped = merged.groupby(KEY_COLUMNS, sort=True)
    return pd.DataFrame({
        "n_trials": grouped[trial_col].nunique(),
        "n_rows": grouped.size(),
    })


def _describe(keys: List[NormalizedKey], limit: int = 10) -> str:
    lines = [f"  - {key.lab}/{key.subject}" for key in keys[:limit]]
    if len(keys) > limit:
        lines.append(f"  ... and {len(keys) - limit} more")
    return "\n".join(lines)


def verify(merged: pd.DataFrame, pre_trial: pd.DataFrame, pre_participant: pd.DataFrame,
           unconfirmed: FrozenSet[NormalizedKey] = frozenset()) -> int:
    """
    Check conservation of per-key counts across the join.

    Args:
        merged: Output of join_sources.join
        pre_trial: Trial aggregate computed before the join
        pre_participant: Participant aggregate computed before the join
        unconfirmed: Keys reported as unconfirmed discrepancies

    Returns:
        Number of matched keys verified

    Raises:
        DuplicateParticipantError: If a matched key has several participant rows
        MergeIntegrityError: If any matched key's counts changed, or the merged
            table holds keys that were not matched before the join
    """
    matched = [
        NormalizedKey(lab, subject)
        for lab, subject in pre_trial.index.intersection(pre_participant.index)
        if NormalizedKey(lab, subject) not in unconfirmed
    ]
    matched.sort()
    matched_set = set(matched)
    matched_index = pd.MultiIndex.from_arrays(
        [[key.lab for key in matched], [key.subject for key in matched]], names=KEY_COLUMNS
    )

    participant_rows = pre_participant["n_rows"].reindex(matched_index)
    duplicated = [NormalizedKey(*key) for key, n in participant_rows.items() if n > 1]
    if duplicated:
        raise DuplicateParticipantError(
            f"{len(duplicated)} matched key(s) have more than one participant row:\n"
            f"{_describe(duplicated)}",
            duplicated,
        )

    post = recount(merged)

    extra = sorted(NormalizedKey(*key) for key in post.index if NormalizedKey(*key) not in matched_set)
    if extra:
        raise MergeIntegrityError(
            f"Merged table contains {len(extra)} key(s) that were not matched before the join:\n"
            f"{_describe(extra)}",
            extra,
        )

    post = post.reindex(matched_index, fill_value=0)
    pre = pre_trial.reindex(matched_index)
    diverged = (post["n_rows"] != pre["n_rows"]) | (post["n_trials"] != pre["n_trials"])
    mismatched = [NormalizedKey(*key) for key in post.index[diverged.to_numpy()]]
    if mismatched:
        raise MergeIntegrityError(
            f"Row/trial counts changed across the join for {len(mismatched)} matched key(s):\n"
            f"{_describe(mismatched)}",
            mismatched,
        )

    return len(matched)
