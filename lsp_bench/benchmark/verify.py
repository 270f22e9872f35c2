"""``--verify``: compare definition-style responses against configured locations."""

from __future__ import annotations

import dataclasses
from typing import Any, Callable, Optional, Sequence

from lsp_bench.benchmark.methods import ExpectConfig, MethodConfig
from lsp_bench.benchmark.runner import STATUS_OK, BenchRow, ResolvedSnapshot, Sample


@dataclasses.dataclass
class VerifyTally:
    passed: int = 0
    failed: int = 0
    # rows or snapshots with no expectation configured
    skipped: int = 0

    @property
    def checked(self) -> int:
        return self.passed + self.failed


def _checked_response(sample: Sample) -> Any:
    return sample.raw if sample.raw is not None else sample.response


def _location(resp: Any) -> Any:
    if isinstance(resp, dict):
        if "result" in resp:
            return resp["result"]
        if "params" in resp:
            return resp["params"]
    return resp


def check_expectation(resp: Any, expect: ExpectConfig) -> Optional[str]:
    """Check a response against an expected location.

    ``resp`` may be a full response envelope or its bare result. For an array
    result the first element is checked. ``expect.file`` must be a suffix of
    the location URI (``targetUri`` or ``uri``); ``expect.line`` must equal
    the start line of ``targetRange`` or ``range``.

    Returns None on a match, otherwise a short description of the mismatch.
    """
    location = _location(resp)
    if isinstance(location, list):
        if not location:
            return "response is empty array"
        location = location[0]
    elif location is None:
        return "response is null"
    if not isinstance(location, dict):
        location = {}

    if expect.file is not None:
        uri = location.get("targetUri") or location.get("uri") or ""
        if not isinstance(uri, str):
            uri = ""
        if not uri.endswith(expect.file):
            got = uri.rsplit("/", 1)[-1]
            return f'file: expected "{expect.file}" but got "{got}"'

    if expect.line is not None:
        rng = location.get("targetRange") or location.get("range")
        start = rng.get("start") if isinstance(rng, dict) else None
        actual = start.get("line") if isinstance(start, dict) else None
        if not isinstance(actual, int):
            return f"line: expected {expect.line} but response has no range"
        if actual != expect.line:
            return f"line: expected {expect.line} but got {actual}"

    return None


def verify_rows(
    rows: Sequence[BenchRow],
    method_config: Optional[MethodConfig],
    snapshots: Sequence[ResolvedSnapshot],
    tally: VerifyTally,
    *,
    echo: Callable[[str], None] = print,
) -> None:
    """Check every ok row of one benchmark and update ``tally``.

    With snapshots, iteration i is checked against snapshot i's expectation,
    falling back to the method's. Without, only the first iteration is
    checked against the method's expectation.
    """
    method_expect = method_config.expect if method_config is not None else None
    for row in rows:
        if row.status != STATUS_OK:
            continue
        if snapshots:
            for i, (sample, snap) in enumerate(zip(row.iterations, snapshots), 1):
                expect = snap.expect or method_expect
                if expect is None:
                    tally.skipped += 1
                    continue
                _record(
                    check_expectation(_checked_response(sample), expect),
                    f"[{i}] {row.label} {snap.path.name}",
                    tally,
                    echo,
                )
        elif method_expect is None:
            tally.skipped += 1
        elif row.iterations:
            sample = row.iterations[0]
            _record(
                check_expectation(_checked_response(sample), method_expect),
                row.label,
                tally,
                echo,
            )


def _record(
    mismatch: Optional[str], what: str, tally: VerifyTally, echo: Callable[[str], None]
) -> None:
    if mismatch is None:
        tally.passed += 1
        echo(f"  verify ok    {what}")
    else:
        tally.failed += 1
        echo(f"  verify FAIL  {what} -- {mismatch}")


def report_tally(tally: VerifyTally, echo: Callable[[str], None] = print) -> bool:
    """Print the verification summary. Returns False if any check failed."""
    if tally.checked == 0 and tally.skipped > 0:
        echo(f"  verify: no expect fields found in config (skipped {tally.skipped})")
        return True
    if tally.failed == 0:
        echo(f"  verify: {tally.passed}/{tally.checked} expectations passed")
        return True
    echo(f"  verify: {tally.failed}/{tally.checked} expectations failed")
    return False
