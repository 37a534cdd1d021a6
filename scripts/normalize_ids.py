"""
Normalize raw (lab, subject) identifiers into the key space shared by the
participant and trial sources.

Order of operations for every record:
    1. lowercase lab and subject
    2. apply the rule table (id_rules.py), scoped by source and lowercased raw lab
    3. strip every non-alphanumeric character from both fields
"""

import re
from typing import Iterable, NamedTuple

import pandas as pd

from id_rules import DEFAULT_RULES, SOURCE_TYPES, Rule, rules_for

KEY_COLUMNS = ["lab", "subject"]
ROW_ORDER = "row_order"

NON_ALNUM = re.compile(r"[\W_]+")


class NormalizedKey(NamedTuple):
    lab: str
    subject: str


def canonicalize(value: str) -> str:
    """
    Generic pass shared by every record: lowercase and drop anything that is
    not a letter or digit.

    Examples:
        >>> canonicalize("MB_0101")
        'mb0101'
        >>> canonicalize(" Lancs-Lab ")
        'lancslab'
    """
    return NON_ALNUM.sub("", value.lower())


def normalize(source_type: str, raw_lab: str, raw_subject: str,
              rules: Iterable[Rule] = DEFAULT_RULES) -> NormalizedKey:
    """
    Map a raw identifier pair onto its normalized key.

    Args:
        source_type: 'participant' or 'trial'
        raw_lab: Lab identifier as entered by the site
        raw_subject: Subject identifier as entered by the site
        rules: Ordered rule table

    Returns:
        NormalizedKey

    Examples:
        >>> normalize("trial", "LANCSLAB", "lancs_12")
        NormalizedKey(lab='lancaster', subject='12')
        >>> normalize("trial", "mylab", "MB_0101")
        NormalizedKey(lab='mylab', subject='mb0101')
    """
    if source_type not in SOURCE_TYPES:
        raise ValueError(f"Unknown source type '{source_type}'. Expected one of {SOURCE_TYPES}")

    lab = raw_lab.lower()
    subject = raw_subject.lower()

    # Scope is decided on the lowercased raw lab, before any lab rename
    for rule in rules_for(source_type, lab, rules):
        if rule.field == "lab":
            lab = rule.apply(lab)
        else:
            subject = rule.apply(subject)

    return NormalizedKey(canonicalize(lab), canonicalize(subject))


def normalize_frame(df: pd.DataFrame, source_type: str,
                    rules: Iterable[Rule] = DEFAULT_RULES) -> pd.DataFrame:
    """
    Return a copy of ``df`` with normalized ``lab``/``subject`` columns.

    The raw identifiers are kept in ``lab_raw``/``subject_raw``. Missing
    identifiers are treated as empty strings. A ``row_order`` column holding
    the input position is added when the frame does not already carry one, so
    first/last resolution downstream does not depend on how rows were batched.
    """
    missing_cols = set(KEY_COLUMNS) - set(df.columns)
    if missing_cols:
        raise ValueError(f"Missing required columns: {missing_cols}")

    rules = tuple(rules)
    out = df.copy()
    if ROW_ORDER not in out.columns:
        out[ROW_ORDER] = range(len(out))

    raw_labs = out["lab"].fillna("").astype(str)
    raw_subjects = out["subject"].fillna("").astype(str)

    # Pure function of the pair, so each distinct pair is normalized once
    cache = {}
    keys = []
    for pair in zip(raw_labs, raw_subjects):
        if pair not in cache:
            cache[pair] = normalize(source_type, pair[0], pair[1], rules)
        keys.append(cache[pair])

    out["lab_raw"] = df["lab"]
    out["subject_raw"] = df["subject"]
    out["lab"] = [key.lab for key in keys]
    out["subject"] = [key.subject for key in keys]

    return out
