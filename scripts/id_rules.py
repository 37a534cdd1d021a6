"""
Ordered table of lab-scoped identifier corrections.

Each rule rewrites one identifier field (lab or subject) of records coming from
one source (participant sheets, trial sheets, or both). Rules only ever see
lowercased values, and they run in table order, each one receiving the output
of the previous one. The generic alphanumeric strip happens afterwards, in
normalize_ids.py.

Rules must be written so that normalizing an already-normalized key is a no-op:
patterns tolerate the punctuation and whitespace the generic pass removes (see
``loose``) and remove a repeatable affix as one run. A lab rename matches
WHOLE_VALUE, so it fires on every lab its scope accepts, and it must not land
on a name that other rules are scoped to.
"""

import json
import re
import dataclasses
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

PARTICIPANT = "participant"
TRIAL = "trial"
BOTH = "both"

SOURCE_TYPES = (PARTICIPANT, TRIAL)
RULE_SOURCES = (PARTICIPANT, TRIAL, BOTH)
RULE_FIELDS = ("lab", "subject")


def loose(word: str) -> str:
    """
    Build a pattern matching ``word`` with any punctuation or whitespace
    before, after, or between its characters.

    Examples:
        >>> bool(re.fullmatch(loose("lancslab"), "lancs-lab "))
        True
    """
    sep = r"[\W_]*"
    return sep + sep.join(re.escape(ch) for ch in word) + sep


# Matches the entire value, embedded line breaks included (Excel Alt-Enter cells)
WHOLE_VALUE = r"(?s)\A.*\Z"


@dataclass(frozen=True)
class Rule:
    """
    One identifier rewrite.

    Args:
        source: 'participant', 'trial' or 'both'
        field: 'lab' or 'subject'
        match: regular expression searched in the field's current value
        replacement: ``re.sub`` replacement template
        lab: optional regular expression that must fully match the
            lowercased raw lab for the rule to apply (None = every lab)
        note: free-text description shown in audits
    """
    source: str
    field: str
    match: str
    replacement: str
    lab: Optional[str] = None
    note: str = ""
    _pattern: re.Pattern = dataclasses.field(init=False, repr=False, compare=False)
    _lab_pattern: Optional[re.Pattern] = dataclasses.field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.source not in RULE_SOURCES:
            raise ValueError(f"Invalid rule source '{self.source}'. Expected one of {RULE_SOURCES}")
        if self.field not in RULE_FIELDS:
            raise ValueError(f"Invalid rule field '{self.field}'. Expected one of {RULE_FIELDS}")
        try:
            object.__setattr__(self, "_pattern", re.compile(self.match))
            object.__setattr__(
                self, "_lab_pattern", re.compile(self.lab) if self.lab is not None else None
            )
        except re.error as e:
            raise ValueError(f"Invalid pattern in rule '{self.note or self.match}': {e}") from e

    def applies_to(self, source_type: str, lab: str) -> bool:
        if self.source != BOTH and self.source != source_type:
            return False
        if self._lab_pattern is None:
            return True
        return self._lab_pattern.fullmatch(lab) is not None

    def apply(self, value: str) -> str:
        """Rewrite ``value``; a pattern that does not match leaves it unchanged."""
        return self._pattern.sub(self.replacement, value)


DEFAULT_RULES: Tuple[Rule, ...] = (
    # lab renames
    Rule(BOTH, "lab", WHOLE_VALUE, "lancaster", lab=loose("lancslab"),
         note="Lancaster submitted under its booth name"),
    Rule(BOTH, "lab", WHOLE_VALUE, "brookes", lab=loose("babylabbrookes"),
         note="Oxford Brookes used the long lab name"),
    Rule(TRIAL, "lab", WHOLE_VALUE, "goettingen", lab=loose("wsigoettingen"),
         note="Goettingen trial exports carry the institute prefix"),
    # subject fixes
    Rule(TRIAL, "subject", "^" + loose("lancs"), "", lab=loose("lancslab"),
         note="Lancaster trial sheets prefix subjects with the lab code"),
    Rule(BOTH, "subject", r"^[\W_0]*(?=\d)", "", lab=loose("bounduw"),
         note="UW zero-pads subject numbers inconsistently"),
    Rule(TRIAL, "subject", r"^[\W_]*s[\W_]*(?=\d)", "", lab=loose("infantcogubc"),
         note="UBC trial sheets use S-prefixed subject numbers"),
    Rule(PARTICIPANT, "subject", "(?:" + loose("session") + r"[\W_\d]*)+$", "", lab=loose("babylabprinceton"),
         note="Princeton participant sheet appends one or more session numbers"),
    Rule(TRIAL, "subject", r"^(?=[\W_]*\d)[\W_\d]+$", r"plym\g<0>", lab=loose("babylabplymouth"),
         note="Plymouth trial sheets drop the 'plym' prefix on numeric subjects"),
)


def rules_for(source_type: str, lab: str, rules: Iterable[Rule] = DEFAULT_RULES) -> List[Rule]:
    """Rules that apply to a record of ``source_type`` from (lowercased) ``lab``, in table order."""
    return [rule for rule in rules if rule.applies_to(source_type, lab)]


def load_rules(filepath: str) -> Tuple[Rule, ...]:
    """
    Load an ordered list of rules from a JSON file.

    The file holds either a list of rule objects or ``{"rules": [...]}``. Each
    object has the keys ``source``, ``field``, ``match``, ``replacement`` and
    optionally ``lab`` and ``note``.

    Args:
        filepath: Path to the JSON rule file

    Returns:
        Tuple of rules in file order

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file is not a list of valid rule objects
    """
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Rule file not found: {filepath}")

    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    if isinstance(data, dict):
        data = data.get("rules")
    if not isinstance(data, list):
        raise ValueError(f"Rule file {path.name} must contain a list of rules")

    rules = []
    required = {"source", "field", "match", "replacement"}
    for idx, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise ValueError(f"Rule #{idx} in {path.name} is not an object")
        missing = required - set(entry)
        if missing:
            raise ValueError(f"Rule #{idx} in {path.name} is missing keys: {sorted(missing)}")
        rules.append(Rule(
            source=entry["source"],
            field=entry["field"],
            match=entry["match"],
            replacement=entry["replacement"],
            lab=entry.get("lab"),
            note=entry.get("note", ""),
        ))

    return tuple(rules)
