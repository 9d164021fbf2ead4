"""
Tests for the aggregated results table.
"""

import csv
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from stackmetrics.results import (
    LABEL_HEADER,
    CommandResult,
    DuplicateCellError,
    ResultsTable,
)


def test_empty_table():
    table = ResultsTable()
    assert table.get_table() is None
    assert not table.has_data()
    assert len(table) == 0


def test_first_seen_order():
    table = ResultsTable()
    table.add("b", "Volume", 2.0)
    table.add("a", "Volume", 1.0)
    table.add("b", "Ratio", 0.5)

    snapshot = table.get_table()
    assert snapshot.headers == [LABEL_HEADER, "Volume", "Ratio"]
    assert snapshot.rows == [["b", 2.0, 0.5], ["a", 1.0, None]]
    assert snapshot.n_rows == 2
    assert snapshot.column("Ratio") == [0.5, None]


def test_interleaved_commands_share_rows():
    table = ResultsTable()
    table.add("bone", "Bone Volume", 10.0)
    table.add("bone Time: 1", "Fractal dimension", 2.1)
    table.add("bone", "Fractal dimension", 2.3)

    assert table.labels == ["bone", "bone Time: 1"]
    assert table.row("bone") == {"Bone Volume": 10.0, "Fractal dimension": 2.3}
    assert table.get("bone Time: 1", "Bone Volume") is None


def test_duplicate_cell_raises():
    table = ResultsTable()
    table.add("bone", "Volume", 1.0)
    with pytest.raises(DuplicateCellError):
        table.add("bone", "Volume", 2.0)
    assert table.get("bone", "Volume") == 1.0


def test_empty_label_or_header_ignored():
    table = ResultsTable()
    table.add("", "Volume", 1.0)
    table.add("bone", "", 1.0)
    assert table.get_table() is None


def test_string_values():
    table = ResultsTable()
    table.add("bone", "Note", "Skipped")
    assert table.get_table().rows == [["bone", "Skipped"]]


def test_to_csv(tmp_path):
    table = ResultsTable()
    table.add("a", "Volume", 1.5)
    table.add("b", "Ratio", 0.25)
    path = tmp_path / "results.csv"

    assert table.to_csv(str(path))
    with open(path, newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows == [["Label", "Volume", "Ratio"], ["a", "1.5", ""], ["b", "", "0.25"]]


def test_to_csv_empty(tmp_path):
    path = tmp_path / "results.csv"
    assert not ResultsTable().to_csv(str(path))
    assert not path.exists()


def test_command_result_cancel():
    result = CommandResult.cancel("Need a binary image")
    assert result.cancelled
    assert result.table is None
    assert result.warnings == []
    assert not CommandResult().cancelled
