"""Tests for checking responses against expected locations."""

from __future__ import annotations

from pathlib import Path
from typing import Any, List

import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from lsp_bench.benchmark.methods import ExpectConfig, MethodConfig
from lsp_bench.benchmark.runner import (
    STATUS_FAIL,
    STATUS_OK,
    BenchRow,
    ResolvedSnapshot,
    Sample,
)
from lsp_bench.benchmark.verify import (
    VerifyTally,
    check_expectation,
    report_tally,
    verify_rows,
)

URI = "file:///project/src/libraries/SafeCast.sol"


def _location(uri: str = URI, line: int = 39) -> Any:
    return {
        "uri": uri,
        "range": {
            "start": {"line": line, "character": 4},
            "end": {"line": line, "character": 12},
        },
    }


def _row(*results: Any, label: str = "srv") -> BenchRow:
    samples = tuple(
        Sample(ms=1.0, response="...", raw={"jsonrpc": "2.0", "id": i, "result": r})
        for i, r in enumerate(results, 1)
    )
    return BenchRow(label=label, status=STATUS_OK, iterations=samples)


class TestCheckExpectation:
    """Tests for check_expectation function."""

    def test_match_in_array(self) -> None:
        resp = {"id": 1, "result": [_location(), _location(line=1)]}
        assert check_expectation(resp, ExpectConfig(file="SafeCast.sol", line=39)) is None

    def test_bare_result(self) -> None:
        assert check_expectation(_location(), ExpectConfig(line=39)) is None

    def test_location_link(self) -> None:
        """Test that LocationLink targets are read."""
        link = {
            "targetUri": URI,
            "targetRange": {"start": {"line": 39, "character": 0}, "end": {"line": 40, "character": 0}},
        }
        resp = {"id": 1, "result": [link]}
        assert check_expectation(resp, ExpectConfig(file="SafeCast.sol", line=39)) is None

    def test_wrong_file(self) -> None:
        resp = {"id": 1, "result": _location(uri="file:///project/src/Pool.sol")}
        assert (
            check_expectation(resp, ExpectConfig(file="SafeCast.sol"))
            == 'file: expected "SafeCast.sol" but got "Pool.sol"'
        )

    def test_wrong_line(self) -> None:
        resp = {"id": 1, "result": [_location(line=7)]}
        assert (
            check_expectation(resp, ExpectConfig(line=39)) == "line: expected 39 but got 7"
        )

    def test_no_range(self) -> None:
        resp = {"id": 1, "result": {"uri": URI}}
        assert (
            check_expectation(resp, ExpectConfig(line=39))
            == "line: expected 39 but response has no range"
        )

    def test_empty_and_null(self) -> None:
        expect = ExpectConfig(line=0)
        assert check_expectation({"id": 1, "result": []}, expect) == "response is empty array"
        assert check_expectation({"id": 1, "result": None}, expect) == "response is null"

    def test_empty_expectation_always_passes(self) -> None:
        assert check_expectation({"id": 1, "result": {"x": 1}}, ExpectConfig()) is None


class TestVerifyRows:
    """Tests for verify_rows function."""

    def test_first_iteration_only(self) -> None:
        """Test that without snapshots only the first iteration is checked."""
        tally = VerifyTally()
        echoed: List[str] = []
        row = _row([_location()], [_location(line=1)])
        method = MethodConfig(expect=ExpectConfig(file="SafeCast.sol", line=39))
        verify_rows([row], method, [], tally, echo=echoed.append)
        assert (tally.passed, tally.failed, tally.skipped) == (1, 0, 0)
        assert echoed == ["  verify ok    srv"]

    def test_mismatch_is_reported(self) -> None:
        tally = VerifyTally()
        echoed: List[str] = []
        method = MethodConfig(expect=ExpectConfig(line=40))
        verify_rows([_row([_location()])], method, [], tally, echo=echoed.append)
        assert tally.failed == 1
        assert echoed == ["  verify FAIL  srv -- line: expected 40 but got 39"]

    def test_no_expectation_skips(self) -> None:
        tally = VerifyTally()
        verify_rows([_row([_location()])], None, [], tally, echo=lambda line: None)
        assert (tally.checked, tally.skipped) == (0, 1)

    def test_failed_rows_ignored(self) -> None:
        tally = VerifyTally()
        row = BenchRow(label="dead", status=STATUS_FAIL, error="timeout")
        method = MethodConfig(expect=ExpectConfig(line=39))
        verify_rows([row], method, [], tally, echo=lambda line: None)
        assert tally == VerifyTally()

    def test_snapshot_expectations(self) -> None:
        """Test that each snapshot is checked against its own expectation, else the method's."""
        tally = VerifyTally()
        echoed: List[str] = []
        snapshots = [
            ResolvedSnapshot(Path("/p/v2.sol"), 1, 1, ExpectConfig(line=10)),
            ResolvedSnapshot(Path("/p/v3.sol"), 1, 1),
            ResolvedSnapshot(Path("/p/v4.sol"), 1, 1, ExpectConfig(line=12)),
        ]
        row = _row([_location(line=10)], [_location(line=39)], [_location(line=99)])
        method = MethodConfig(expect=ExpectConfig(line=39))
        verify_rows([row], method, snapshots, tally, echo=echoed.append)
        assert (tally.passed, tally.failed) == (2, 1)
        assert echoed[0] == "  verify ok    [1] srv v2.sol"
        assert echoed[2] == "  verify FAIL  [3] srv v4.sol -- line: expected 12 but got 99"

    def test_snapshot_without_any_expectation_skips(self) -> None:
        tally = VerifyTally()
        snapshots = [ResolvedSnapshot(Path("/p/v2.sol"), 1, 1)]
        verify_rows([_row([_location()])], None, snapshots, tally, echo=lambda line: None)
        assert tally.skipped == 1

    def test_uses_full_response_not_summary(self) -> None:
        """Test that a truncated summary does not hide the location."""
        tally = VerifyTally()
        sample = Sample(ms=1.0, response='[{"uri":"file:///pro...', raw={"id": 1, "result": [_location()]})
        row = BenchRow(label="srv", status=STATUS_OK, iterations=(sample,))
        verify_rows(
            [row], MethodConfig(expect=ExpectConfig(line=39)), [], tally, echo=lambda line: None
        )
        assert tally.passed == 1


class TestReportTally:
    """Tests for report_tally function."""

    def test_all_passed(self) -> None:
        echoed: List[str] = []
        assert report_tally(VerifyTally(passed=3), echoed.append)
        assert echoed == ["  verify: 3/3 expectations passed"]

    def test_some_failed(self) -> None:
        echoed: List[str] = []
        assert not report_tally(VerifyTally(passed=2, failed=1), echoed.append)
        assert echoed == ["  verify: 1/3 expectations failed"]

    def test_nothing_configured(self) -> None:
        echoed: List[str] = []
        assert report_tally(VerifyTally(skipped=2), echoed.append)
        assert "no expect fields" in echoed[0]
