"""
Compare the key sets of the trial and participant aggregates before joining.

Every key present on only one side is a discrepancy. Discrepancies whose key
has a confirmed ledger entry are kept for the lab summary but dropped from the
unconfirmed report. Nothing here modifies the aggregates.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional

import pandas as pd
from rapidfuzz import fuzz, process

from aggregate_sources import AGE, NOTES, SESSION_ERROR, TRIAL_ERROR
from exception_ledger import confirmed_keys, empty_ledger
from id_rules import PARTICIPANT, TRIAL
from normalize_ids import NormalizedKey

DIAGNOSTIC_COLUMNS = ["n_trials", "n_rows", TRIAL_ERROR, AGE, NOTES, SESSION_ERROR]
DISCREPANCY_COLUMNS = ["lab", "subject", "present_in", "missing_from", "confirmed"] + DIAGNOSTIC_COLUMNS
REPORT_COLUMNS = [c for c in DISCREPANCY_COLUMNS if c != "confirmed"] + [
    "closest_other_side", "closest_score",
]
SUMMARY_COLUMNS = [
    "lab", "n_subjects_trial", "n_subjects_participant",
    "n_only_trial", "n_only_participant", "n_confirmed", "n_unconfirmed", "concordant",
]


@dataclass
class ValidationResult:
    """Outcome of comparing the two sources' key sets."""
    discrepancies: pd.DataFrame
    unconfirmed: pd.DataFrame
    confirmed_used: pd.DataFrame
    summary: pd.DataFrame

    @property
    def unconfirmed_keys(self) -> FrozenSet[NormalizedKey]:
        return frozenset(NormalizedKey(lab, subject)
                         for lab, subject in zip(self.unconfirmed["lab"], self.unconfirmed["subject"]))

    @property
    def n_symmetric_difference(self) -> int:
        return len(self.discrepancies)


def key_set(agg: pd.DataFrame) -> FrozenSet[NormalizedKey]:
    return frozenset(NormalizedKey(lab, subject) for lab, subject in agg.index)


def _discrepancy_rows(keys: Iterable[NormalizedKey], agg: pd.DataFrame, present_in: str,
                      missing_from: str, confirmed: FrozenSet[NormalizedKey]) -> List[Dict]:
    rows = []
    for key in sorted(keys):
        row = {
            "lab": key.lab,
            "subject": key.subject,
            "present_in": present_in,
            "missing_from": missing_from,
            "confirmed": key in confirmed,
        }
        # Diagnostic fields come from whichever aggregate holds the key
        diag = agg.loc[tuple(key)]
        for col in DIAGNOSTIC_COLUMNS:
            row[col] = diag[col] if col in diag.index else None
        rows.append(row)
    return rows


def closest_subject(subject: str, candidates: List[str]):
    """
    Most similar candidate subject for a reviewer to look at.

    Returns:
        tuple: (candidate, score 0.0-1.0) or (None, None) without candidates
    """
    if not candidates:
        return None, None
    best = process.extractOne(subject, candidates, scorer=fuzz.ratio)
    if best is None:
        return None, None
    return best[0], round(best[1] / 100.0, 3)


def add_review_hints(unconfirmed: pd.DataFrame, discrepancies: pd.DataFrame) -> pd.DataFrame:
    """
    For each unconfirmed key, name the closest one-sided subject of the same lab
    on the other side. Advisory only: matching never uses it.
    """
    out = unconfirmed.copy()
    hints, scores = [], []
    for lab, subject, present_in in zip(out["lab"], out["subject"], out["present_in"]):
        other = discrepancies[(discrepancies["lab"] == lab) & (discrepancies["present_in"] != present_in)]
        candidate, score = closest_subject(subject, list(other["subject"]))
        hints.append(candidate)
        scores.append(score)
    out["closest_other_side"] = hints
    out["closest_score"] = scores
    return out


def lab_summary(agg_trial: pd.DataFrame, agg_participant: pd.DataFrame,
                discrepancies: pd.DataFrame) -> pd.DataFrame:
    """Per-lab subject counts from each side, with a concordance flag."""
    trial_counts = pd.Series([lab for lab, _ in agg_trial.index], dtype=object).value_counts()
    participant_counts = pd.Series([lab for lab, _ in agg_participant.index], dtype=object).value_counts()
    labs = sorted(set(trial_counts.index) | set(participant_counts.index))

    rows = []
    for lab in labs:
        lab_disc = discrepancies[discrepancies["lab"] == lab]
        n_trial = int(trial_counts.get(lab, 0))
        n_participant = int(participant_counts.get(lab, 0))
        rows.append({
            "lab": lab,
            "n_subjects_trial": n_trial,
            "n_subjects_participant": n_participant,
            "n_only_trial": int((lab_disc["present_in"] == TRIAL).sum()),
            "n_only_participant": int((lab_disc["present_in"] == PARTICIPANT).sum()),
            "n_confirmed": int(lab_disc["confirmed"].sum()),
            "n_unconfirmed": int((~lab_disc["confirmed"]).sum()),
            "concordant": n_trial == n_participant,
        })
    return pd.DataFrame(rows, columns=SUMMARY_COLUMNS)


def validate(agg_trial: pd.DataFrame, agg_participant: pd.DataFrame,
             exceptions: Optional[pd.DataFrame] = None) -> ValidationResult:
    """
    Compute the symmetric difference of the two key sets and apply the ledger.

    Args:
        agg_trial: Trial aggregate (aggregate_sources.aggregate)
        agg_participant: Participant aggregate
        exceptions: Exception ledger (exception_ledger.load_ledger)

    Returns:
        ValidationResult
    """
    if exceptions is None:
        exceptions = empty_ledger()
    confirmed = confirmed_keys(exceptions)

    trial_keys = key_set(agg_trial)
    participant_keys = key_set(agg_participant)

    rows = _discrepancy_rows(trial_keys - participant_keys, agg_trial, TRIAL, PARTICIPANT, confirmed)
    rows += _discrepancy_rows(participant_keys - trial_keys, agg_participant, PARTICIPANT, TRIAL, confirmed)

    discrepancies = pd.DataFrame(rows, columns=DISCREPANCY_COLUMNS)
    discrepancies["confirmed"] = discrepancies["confirmed"].astype(bool)
    discrepancies = discrepancies.sort_values(["lab", "subject", "present_in"], kind="mergesort")
    discrepancies = discrepancies.reset_index(drop=True)

    confirmed_used = discrepancies[discrepancies["confirmed"]].reset_index(drop=True)
    unconfirmed = discrepancies[~discrepancies["confirmed"]].reset_index(drop=True)
    unconfirmed = add_review_hints(unconfirmed, discrepancies)[REPORT_COLUMNS]

    return ValidationResult(
        discrepancies=discrepancies,
        unconfirmed=unconfirmed,
        confirmed_used=confirmed_used,
        summary=lab_summary(agg_trial, agg_participant, discrepancies),
    )
