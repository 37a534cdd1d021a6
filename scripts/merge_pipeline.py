#!/usr/bin/env python
"""
Merge participant-level and trial-level lab data on normalized (lab, subject).

Steps:
    1. Normalize identifiers of both sources with the rule table
    2. Aggregate each source per key
    3. Diff the key sets, apply the exception ledger, report what remains
    4. Join trial rows with participant rows
    5. Verify per-key counts survived the join; abort without output if not
    6. Write the merged table, the unconfirmed-unmatched report, the lab
       summary and a diagnostics file

Usage:
    python scripts/merge_pipeline.py \
        --trials data/trials/*.csv \
        --participants data/participants/*.csv \
        --ledger data/unmatched_exceptions.csv \
        --output-dir processed \
        --verbose
"""

import argparse
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pandas as pd

from aggregate_sources import TRIAL_NUM, aggregate
from exception_ledger import empty_ledger, load_ledger
from id_rules import DEFAULT_RULES, PARTICIPANT, TRIAL, Rule, load_rules
from join_sources import join
from load_sources import load_column_map, load_source
from merge_validation import ValidationResult, validate
from normalize_ids import KEY_COLUMNS, normalize_frame
from verify_merge import MergeIntegrityError, verify

MERGED_FILENAME = "merged.csv"
UNMATCHED_FILENAME = "unconfirmed_unmatched.csv"
SUMMARY_FILENAME = "lab_summary.csv"
DIAGNOSTICS_FILENAME = "merge_diagnostics.json"
OUTPUT_FILENAMES = (MERGED_FILENAME, UNMATCHED_FILENAME, SUMMARY_FILENAME, DIAGNOSTICS_FILENAME)


@dataclass
class MergeResult:
    """Everything a verified run produced."""
    merged: pd.DataFrame
    validation: ValidationResult
    trial_aggregate: pd.DataFrame
    participant_aggregate: pd.DataFrame
    n_trial_rows: int
    n_participant_rows: int
    n_verified_keys: int

    def diagnostics(self) -> Dict:
        validation = self.validation
        return {
            "trial_rows": self.n_trial_rows,
            "participant_rows": self.n_participant_rows,
            "trial_keys": len(self.trial_aggregate),
            "participant_keys": len(self.participant_aggregate),
            "matched_keys_verified": self.n_verified_keys,
            "merged_rows": len(self.merged),
            "discrepancies": validation.n_symmetric_difference,
            "confirmed_exceptions_used": len(validation.confirmed_used),
            "unconfirmed_unmatched": len(validation.unconfirmed),
            "labs": len(validation.summary),
            "non_concordant_labs": sorted(
                validation.summary.loc[~validation.summary["concordant"].astype(bool), "lab"].tolist()
            ),
        }


def print_banner(title: str, char: str = '='):
    print(f"\n{char*60}", file=sys.stderr)
    print(title, file=sys.stderr)
    print(f"{char*60}", file=sys.stderr)


def run_pipeline(trials: pd.DataFrame, participants: pd.DataFrame,
                 rules: Iterable[Rule] = DEFAULT_RULES,
                 ledger: Optional[pd.DataFrame] = None,
                 verbose: bool = False) -> MergeResult:
    """
    Normalize, validate, join and verify the two sources.

    Args:
        trials: Trial records with canonical column names
        participants: Participant records with canonical column names
        rules: Ordered rule table
        ledger: Exception ledger (exception_ledger.load_ledger)
        verbose: Print progress information to stderr

    Returns:
        MergeResult

    Raises:
        MergeIntegrityError: If the join changed the counts of a matched key
    """
    rules = tuple(rules)
    if ledger is None:
        ledger = empty_ledger()

    trials_norm = normalize_frame(trials, TRIAL, rules)
    participants_norm = normalize_frame(participants, PARTICIPANT, rules)
    if verbose:
        print(f"Normalized {len(trials_norm)} trial rows and {len(participants_norm)} participant rows "
              f"with {len(rules)} rules", file=sys.stderr)

    agg_trial = aggregate(trials_norm, TRIAL)
    agg_participant = aggregate(participants_norm, PARTICIPANT)
    if verbose:
        print(f"Trial keys:        {len(agg_trial)}", file=sys.stderr)
        print(f"Participant keys:  {len(agg_participant)}", file=sys.stderr)

    validation = validate(agg_trial, agg_participant, ledger)
    if verbose:
        print(f"Discrepancies:     {validation.n_symmetric_difference}", file=sys.stderr)
        print(f"  confirmed:       {len(validation.confirmed_used)}", file=sys.stderr)
        print(f"  unconfirmed:     {len(validation.unconfirmed)}", file=sys.stderr)

    merged = join(trials_norm, participants_norm)
    n_verified = verify(merged, agg_trial, agg_participant, validation.unconfirmed_keys)
    if verbose:
        print(f"Merged rows:       {len(merged)} ({n_verified} matched keys verified)", file=sys.stderr)

    return MergeResult(
        merged=merged,
        validation=validation,
        trial_aggregate=agg_trial,
        participant_aggregate=agg_participant,
        n_trial_rows=len(trials_norm),
        n_participant_rows=len(participants_norm),
        n_verified_keys=n_verified,
    )


def clear_outputs(output_dir: str, verbose: bool = False) -> List[Path]:
    """
    Remove results of an earlier run from the output directory.

    Only the files this pipeline writes are touched; anything else in the
    directory is left alone.

    Returns:
        List of paths removed
    """
    out = Path(output_dir)
    removed = []
    for filename in OUTPUT_FILENAMES:
        path = out / filename
        if path.is_file():
            path.unlink()
            removed.append(path)
            if verbose:
                print(f"Removed previous output: {path}", file=sys.stderr)
    return removed


def write_outputs(result: MergeResult, output_dir: str) -> Dict[str, Path]:
    """
    Write the merged table, reports and diagnostics.

    Args:
        result: Verified MergeResult
        output_dir: Output directory (created if missing)

    Returns:
        Dict of output name -> path written
    """
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    paths = {
        "merged": out / MERGED_FILENAME,
        "unmatched": out / UNMATCHED_FILENAME,
        "summary": out / SUMMARY_FILENAME,
        "diagnostics": out / DIAGNOSTICS_FILENAME,
    }

    result.merged.to_csv(paths["merged"], index=False)
    result.validation.unconfirmed.to_csv(paths["unmatched"], index=False)
    result.validation.summary.to_csv(paths["summary"], index=False)
    with open(paths["diagnostics"], 'w', encoding='utf-8') as f:
        json.dump(result.diagnostics(), f, indent=2, sort_keys=True)

    return paths


def process(trial_files, participant_files, output_dir: str, ledger_file: Optional[str] = None,
            column_map_file: Optional[str] = None, rules_file: Optional[str] = None,
            verbose: bool = False) -> Dict[str, Path]:
    """Load inputs from disk, run the pipeline and write its outputs."""
    # Earlier results go first, so a failed run leaves none behind
    clear_outputs(output_dir, verbose)

    column_map = load_column_map(column_map_file) if column_map_file else None

    rules = DEFAULT_RULES
    if rules_file:
        rules = DEFAULT_RULES + load_rules(rules_file)

    if verbose:
        print_banner("Loading inputs")
        print(f"Trial files:        {len(trial_files)}", file=sys.stderr)
        print(f"Participant files:  {len(participant_files)}", file=sys.stderr)
        if ledger_file:
            print(f"Exception ledger:   {ledger_file}", file=sys.stderr)

    trials = load_source(trial_files, column_map, required=KEY_COLUMNS + [TRIAL_NUM])
    participants = load_source(participant_files, column_map)
    ledger = load_ledger(ledger_file)

    if verbose:
        print_banner("Merging")

    result = run_pipeline(trials, participants, rules, ledger, verbose)
    paths = write_outputs(result, output_dir)

    n_unconfirmed = len(result.validation.unconfirmed)
    if n_unconfirmed:
        print(f"\n⚠️  {n_unconfirmed} unconfirmed unmatched key(s), see {paths['unmatched']}", file=sys.stderr)

    if verbose:
        print_banner("SUMMARY")
        for name, value in result.diagnostics().items():
            print(f"{name + ':':<28} {value}", file=sys.stderr)
        for name, path in paths.items():
            print(f"{name + ' output:':<28} {path}", file=sys.stderr)

    return paths


def main(argv=None):
    """Main entry point for the script."""
    parser = argparse.ArgumentParser(
        description='Merge trial-level and participant-level lab data with identifier reconciliation',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Merge with an exception ledger
  python scripts/merge_pipeline.py --trials trials.csv --participants participants.csv \\
      --ledger unmatched_exceptions.csv --output-dir processed

  # Site column labels and extra lab rules
  python scripts/merge_pipeline.py --trials raw/trials/*.tsv --participants raw/participants/*.xlsx \\
      --column-map column_map.json --rules extra_rules.json --verbose
        """
    )

    parser.add_argument(
        '--trials',
        type=str,
        nargs='+',
        required=True,
        help='Trial-level data file(s), read in the order given'
    )

    parser.add_argument(
        '--participants',
        type=str,
        nargs='+',
        required=True,
        help='Participant-level data file(s), read in the order given'
    )

    parser.add_argument(
        '--ledger',
        type=str,
        default=None,
        help='Exception ledger with subject, lab, Confirmed columns (default: none)'
    )

    parser.add_argument(
        '--column-map',
        type=str,
        default=None,
        help='JSON object mapping site column labels to canonical names'
    )

    parser.add_argument(
        '--rules',
        type=str,
        default=None,
        help='JSON file of extra identifier rules, applied after the built-in table'
    )

    parser.add_argument(
        '--output-dir',
        type=str,
        default='processed',
        help='Output directory (default: processed)'
    )

    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Print progress information to stderr'
    )

    args = parser.parse_args(argv)

    try:
        process(
            trial_files=args.trials,
            participant_files=args.participants,
            output_dir=args.output_dir,
            ledger_file=args.ledger,
            column_map_file=args.column_map,
            rules_file=args.rules,
            verbose=args.verbose,
        )

    except MergeIntegrityError as e:
        print(f"\n⚠️  MERGE INTEGRITY FAILURE ⚠️", file=sys.stderr)
        print(f"{'='*60}", file=sys.stderr)
        print(str(e), file=sys.stderr)
        print(f"{'='*60}", file=sys.stderr)
        print(f"No output was written; earlier results in {args.output_dir} were removed.", file=sys.stderr)
        sys.exit(2)

    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        import traceback
        if args.verbose:
            traceback.print_exc(file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
