"""Tests for load_sources: reading and remapping site files."""

import json

import pandas as pd
import pytest

from load_sources import apply_column_map, load_column_map, load_source, read_table


class TestReadTable:

    def test_csv_as_strings(self, tmp_path):
        path = tmp_path / "lab1.csv"
        path.write_text("lab,subject,age\nlab1,007,300\nlab1,,\n", encoding="utf-8")

        df = read_table(str(path))

        assert df.loc[0, "subject"] == "007"
        assert df.loc[0, "age"] == "300"
        assert pd.isna(df.loc[1, "subject"])
        assert set(df["origin_file"]) == {"lab1.csv"}

    def test_tsv(self, tmp_path):
        path = tmp_path / "lab1.tsv"
        path.write_text("lab\tsubject\nlab1\ts1\n", encoding="utf-8")
        assert list(read_table(str(path))["subject"]) == ["s1"]

    def test_cleans_headers(self, tmp_path):
        path = tmp_path / "lab1.csv"
        path.write_bytes("\ufefflab , subject\nlab1,s1\n".encode("utf-8"))
        assert list(read_table(str(path)).columns) == ["lab", "subject", "origin_file"]

    def test_latin1_fallback(self, tmp_path):
        path = tmp_path / "lab1.csv"
        path.write_bytes("lab,subject,notes\nlab1,s1,b\xe9b\xe9\n".encode("latin-1"))
        assert read_table(str(path)).loc[0, "notes"] == "b\xe9b\xe9"

    def test_excel(self, tmp_path):
        path = tmp_path / "lab1.xlsx"
        pd.DataFrame({"lab": ["lab1"], "subject": ["007"]}).to_excel(path, index=False)
        assert read_table(str(path)).loc[0, "subject"] == "007"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_table(str(tmp_path / "nope.csv"))


class TestColumnMap:

    def test_renames_case_insensitively(self):
        df = pd.DataFrame({"Lab ID": ["a"], "SubjectID": ["s"], "other": [1]})
        out = apply_column_map(df, {"lab id": "lab", "subjectid": "subject"})
        assert list(out.columns) == ["lab", "subject", "other"]

    def test_no_map(self):
        df = pd.DataFrame({"lab": ["a"]})
        assert apply_column_map(df, None) is df

    def test_duplicate_targets(self):
        df = pd.DataFrame({"labname": ["a"], "lab": ["b"]})
        with pytest.raises(ValueError, match="duplicate columns"):
            apply_column_map(df, {"labname": "lab"})

    def test_load(self, tmp_path):
        path = tmp_path / "map.json"
        path.write_text(json.dumps({"Subject ID": "subject"}))
        assert load_column_map(str(path)) == {"Subject ID": "subject"}

    def test_load_rejects_non_string_targets(self, tmp_path):
        path = tmp_path / "map.json"
        path.write_text(json.dumps({"Subject ID": ["subject"]}))
        with pytest.raises(ValueError):
            load_column_map(str(path))


class TestLoadSource:

    def test_concatenates_in_order(self, tmp_path):
        first = tmp_path / "b.csv"
        second = tmp_path / "a.tsv"
        first.write_text("lab,subject\nlab1,s1\nlab1,s2\n", encoding="utf-8")
        second.write_text("Lab\tSubj\nlab2\ts3\n", encoding="utf-8")

        df = load_source([str(first), str(second)], {"lab": "lab", "subj": "subject"})

        assert list(df["subject"]) == ["s1", "s2", "s3"]
        assert list(df["origin_file"]) == ["b.csv", "b.csv", "a.tsv"]
        assert list(df["row_order"]) == [0, 1, 2]

    def test_missing_required_column(self, tmp_path):
        path = tmp_path / "trials.csv"
        path.write_text("lab,subject\nlab1,s1\n", encoding="utf-8")
        with pytest.raises(ValueError, match="trial_num"):
            load_source([str(path)], required=["lab", "subject", "trial_num"])

    def test_no_files(self):
        with pytest.raises(ValueError, match="No input files"):
            load_source([])
