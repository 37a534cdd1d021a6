"""Tests for id_rules: the ordered identifier rule table."""

import json
import re

import pytest

from id_rules import (
    BOTH,
    DEFAULT_RULES,
    PARTICIPANT,
    TRIAL,
    Rule,
    load_rules,
    loose,
    rules_for,
)


class TestLoose:

    @pytest.mark.parametrize("value", ["lancslab", "lancs-lab", " LANCS_LAB ".lower(), "l.a.n.c.s.l.a.b"])
    def test_matches_punctuated_variants(self, value):
        assert re.fullmatch(loose("lancslab"), value)

    def test_rejects_other_words(self):
        assert re.fullmatch(loose("lancslab"), "lancaster") is None


class TestRule:

    def test_rejects_unknown_source(self):
        with pytest.raises(ValueError, match="rule source"):
            Rule("both_sources", "lab", "x", "y")

    def test_rejects_unknown_field(self):
        with pytest.raises(ValueError, match="rule field"):
            Rule(BOTH, "age", "x", "y")

    def test_rejects_bad_pattern(self):
        with pytest.raises(ValueError, match="Invalid pattern"):
            Rule(BOTH, "subject", "(unclosed", "")

    def test_non_matching_rule_leaves_value(self):
        rule = Rule(BOTH, "subject", r"^s(?=\d)", "")
        assert rule.apply("p12") == "p12"
        assert rule.apply("s12") == "12"

    def test_source_scope(self):
        rule = Rule(TRIAL, "subject", "x", "")
        assert rule.applies_to(TRIAL, "anylab")
        assert not rule.applies_to(PARTICIPANT, "anylab")

    def test_both_scope(self):
        rule = Rule(BOTH, "subject", "x", "")
        assert rule.applies_to(TRIAL, "anylab")
        assert rule.applies_to(PARTICIPANT, "anylab")

    def test_lab_predicate_is_full_match(self):
        rule = Rule(BOTH, "subject", "x", "", lab="uw")
        assert rule.applies_to(TRIAL, "uw")
        assert not rule.applies_to(TRIAL, "bounduw")

    def test_rules_compare_by_definition(self):
        assert Rule(BOTH, "lab", "a", "b") == Rule(BOTH, "lab", "a", "b")


class TestRulesFor:

    def test_keeps_table_order(self):
        selected = rules_for(TRIAL, "lancslab")
        positions = [DEFAULT_RULES.index(rule) for rule in selected]
        assert positions == sorted(positions)
        assert [rule.field for rule in selected] == ["lab", "subject"]

    def test_trial_only_rule_skipped_for_participants(self):
        selected = rules_for(PARTICIPANT, "lancslab")
        assert [rule.field for rule in selected] == ["lab"]

    def test_unknown_lab_gets_no_rules(self):
        assert rules_for(TRIAL, "somewhereelse") == []


class TestLoadRules:

    def test_loads_list(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps([
            {"source": "trial", "field": "lab", "match": "^.*$", "replacement": "york",
             "lab": "yorkbabylab", "note": "York"},
            {"source": "both", "field": "subject", "match": "^x", "replacement": ""},
        ]))

        rules = load_rules(str(path))

        assert len(rules) == 2
        assert rules[0].lab == "yorkbabylab"
        assert rules[0].note == "York"
        assert rules[1].lab is None

    def test_loads_wrapped_object(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps({"rules": [
            {"source": "participant", "field": "subject", "match": "-", "replacement": ""},
        ]}))
        assert len(load_rules(str(path))) == 1

    def test_missing_keys(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps([{"source": "trial", "field": "lab"}]))
        with pytest.raises(ValueError, match="missing keys"):
            load_rules(str(path))

    def test_not_a_list(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps({"source": "trial"}))
        with pytest.raises(ValueError, match="list of rules"):
            load_rules(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_rules(str(tmp_path / "nope.json"))


class TestDefaultRules:

    @pytest.mark.parametrize("value", ["lancslab", "lancs\nlab", "lancs\r\nlab\n", "\tlancs lab"])
    def test_rename_covers_line_breaks(self, value):
        rename = rules_for(TRIAL, value)[0]
        assert rename.field == "lab"
        assert rename.apply(value) == "lancaster"

    def test_session_suffixes_removed_as_one_run(self):
        rule = rules_for(PARTICIPANT, "babylabprinceton")[0]
        assert rule.apply("p12session2session3") == "p12"
        assert rule.apply("p12_session 2-session_3") == "p12"
        assert rule.apply("p12session2x") == "p12session2x"
