"""Run one benchmark across a list of servers.

Each (benchmark, server) pair ends in exactly one of three outcomes:

- ``BenchOk``: every measured iteration produced a usable response.
- ``BenchInvalid``: the server answered, but a measured response was null,
  an error or empty. Remaining iterations for that server are skipped.
- ``BenchFail``: spawn, I/O, protocol or timeout failure.

Servers run one after another and iterations are strictly sequential.
Every session is closed (server killed and reaped) on every exit path.
Each outcome also carries the server's resident memory when it could be
sampled.
"""

from __future__ import annotations

import dataclasses
import json
import time
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

from lsp_bench.benchmark.methods import ExpectConfig, ParamsFn, build_params
from lsp_bench.benchmark.stats import compute_stats, round_ms
from lsp_bench.client import DEFAULT_LANGUAGE_ID, DiagnosticsInfo, LspClient
from lsp_bench.errors import LspBenchError
from lsp_bench.protocol import JsonObj
from lsp_bench.transport import ServerSpec


STATUS_OK = "ok"
STATUS_INVALID = "invalid"
STATUS_FAIL = "fail"

DEFAULT_RESPONSE_LIMIT = 80

# Response summaries that carry no information for ranking purposes.
_EMPTY_SUMMARIES = {"", "null", "no result"}

ProgressFn = Callable[[str], None]


@dataclasses.dataclass
class Sample:
    ms: float
    response: Any
    # full response, kept for expectation checks; never serialized
    raw: Optional[JsonObj] = dataclasses.field(default=None, repr=False)


@dataclasses.dataclass
class BenchOk:
    samples: List[Sample]
    diagnostics: Optional[DiagnosticsInfo] = None
    rss_kb: Optional[int] = None

    @property
    def first_response(self) -> Any:
        return self.samples[0].response if self.samples else None


@dataclasses.dataclass
class BenchInvalid:
    first_response: JsonObj
    diagnostics: Optional[DiagnosticsInfo] = None
    rss_kb: Optional[int] = None


@dataclasses.dataclass
class BenchFail:
    error: str
    logs: List[str] = dataclasses.field(default_factory=list)
    rss_kb: Optional[int] = None


BenchResult = Union[BenchOk, BenchInvalid, BenchFail]


@dataclasses.dataclass(frozen=True)
class BenchRow:
    label: str
    status: str
    p50: float = 0.0
    p95: float = 0.0
    mean: float = 0.0
    iterations: Tuple[Sample, ...] = ()
    summary: Any = None
    error: str = ""
    logs: Tuple[str, ...] = ()
    rss_kb: Optional[int] = None

    @property
    def samples(self) -> List[float]:
        return [s.ms for s in self.iterations]

    def to_json(self) -> JsonObj:
        obj: JsonObj
        if self.status == STATUS_OK:
            obj = {
                "server": self.label,
                "status": STATUS_OK,
                "p50_ms": round_ms(self.p50),
                "p95_ms": round_ms(self.p95),
                "mean_ms": round_ms(self.mean),
                "iterations": [
                    {"ms": round_ms(s.ms), "response": s.response}
                    for s in self.iterations
                ],
                "response": self.summary,
            }
        elif self.status == STATUS_INVALID:
            obj = {
                "server": self.label,
                "status": STATUS_INVALID,
                "response": self.summary,
            }
        else:
            obj = {"server": self.label, "status": STATUS_FAIL, "error": self.error}
        if self.rss_kb is not None:
            obj["rss_kb"] = self.rss_kb
        return obj


@dataclasses.dataclass
class BenchContext:
    """Inputs shared by every server within one benchmark."""

    cwd: Path
    root_uri: str
    target_file: Path
    warmup: int
    iterations: int
    timeout: float
    index_timeout: float
    response_limit: int = DEFAULT_RESPONSE_LIMIT
    language_id: str = DEFAULT_LANGUAGE_ID
    trace: bool = False

    @property
    def total(self) -> int:
        return self.warmup + self.iterations


@dataclasses.dataclass
class ResolvedSnapshot:
    """A didChange snapshot with its file path made absolute."""

    path: Path
    line: int
    col: int
    expect: Optional[ExpectConfig] = None


def is_valid_response(resp: JsonObj) -> bool:
    """Whether a response carries a usable payload.

    Errors, a missing or null ``result``, an empty array, and a completion
    list with no items are all unusable.
    """
    if "error" in resp:
        return False
    if "result" not in resp:
        return False
    result = resp["result"]
    if result is None:
        return False
    if isinstance(result, list):
        return len(result) > 0
    if isinstance(result, dict) and isinstance(result.get("items"), list):
        return len(result["items"]) > 0
    return True


def response_summary(resp: JsonObj, max_chars: int = DEFAULT_RESPONSE_LIMIT) -> Any:
    """Reduce a response (or notification) to the part worth reporting.

    With ``max_chars > 0`` a payload whose compact JSON is longer than that
    is replaced by the truncated JSON text.
    """
    if "error" in resp:
        err = resp["error"]
        message = err.get("message") if isinstance(err, dict) else None
        return {"error": message if isinstance(message, str) else "unknown"}

    if "result" in resp:
        value = resp["result"]
    elif "params" in resp:
        value = resp["params"]
    else:
        return None

    if max_chars > 0:
        text = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
        if len(text) > max_chars:
            return text[:max_chars] + "..."
    return value


def has_meaningful_response(summary: Any) -> bool:
    if summary is None:
        return False
    if isinstance(summary, str):
        return summary not in _EMPTY_SUMMARIES
    if isinstance(summary, list):
        return len(summary) > 0
    return True


def iter_msg(i: int, warmup: int, iterations: int) -> str:
    if i < warmup:
        return f"warmup {i + 1}/{warmup}"
    return f"iter {i - warmup + 1}/{iterations}"


def _noop(msg: str) -> None:
    pass


def _fail(
    error: Union[str, BaseException],
    client: Optional[LspClient],
    rss_kb: Optional[int] = None,
) -> BenchFail:
    logs = list(client.log_lines) if client is not None else []
    return BenchFail(error=str(error), logs=logs, rss_kb=rss_kb)


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


def _peak(current: Optional[int], sample: Optional[int]) -> Optional[int]:
    if sample is None:
        return current
    return sample if current is None else max(current, sample)


def bench_spawn(
    spec: ServerSpec, ctx: BenchContext, on_progress: ProgressFn = _noop
) -> BenchResult:
    """Time spawn + ``initialize`` with a fresh server every iteration."""
    samples: List[Sample] = []
    for i in range(ctx.total):
        on_progress(iter_msg(i, ctx.warmup, ctx.iterations))
        client: Optional[LspClient] = None
        start = time.perf_counter()
        try:
            client = LspClient.spawn(spec, ctx.cwd, trace=ctx.trace)
            client.initialize(ctx.root_uri)
            ms = _elapsed_ms(start)
        except LspBenchError as e:
            return _fail(e, client)
        finally:
            if client is not None:
                client.close()

        on_progress(f"{iter_msg(i, ctx.warmup, ctx.iterations)}  {ms:.1f}ms")
        if i >= ctx.warmup:
            samples.append(Sample(ms=ms, response="ok"))
    return BenchOk(samples=samples)


def bench_diagnostics(
    spec: ServerSpec, ctx: BenchContext, on_progress: ProgressFn = _noop
) -> BenchResult:
    """Time didOpen -> first meaningful diagnostics, fresh server every iteration.

    Memory is sampled after each iteration's diagnostics; the peak is kept.
    """
    samples: List[Sample] = []
    last_info: Optional[DiagnosticsInfo] = None
    peak_rss: Optional[int] = None
    for i in range(ctx.total):
        on_progress(f"{iter_msg(i, ctx.warmup, ctx.iterations)}  waiting for diagnostics")
        client: Optional[LspClient] = None
        try:
            client = LspClient.spawn(spec, ctx.cwd, trace=ctx.trace)
            client.initialize(ctx.root_uri)
            start = time.perf_counter()
            client.open_file(ctx.target_file, language_id=ctx.language_id)
            try:
                info = client.wait_for_valid_diagnostics(ctx.index_timeout)
            except LspBenchError as e:
                return _fail(e, client, client.rss_kb())
            ms = _elapsed_ms(start)
            peak_rss = _peak(peak_rss, client.rss_kb())
        except LspBenchError as e:
            return _fail(e, client)
        finally:
            if client is not None:
                client.close()

        on_progress(f"{iter_msg(i, ctx.warmup, ctx.iterations)}  {ms:.1f}ms")
        if i >= ctx.warmup:
            last_info = info
            samples.append(
                Sample(ms=ms, response=response_summary(info.message, ctx.response_limit))
            )
    return BenchOk(samples=samples, diagnostics=last_info, rss_kb=peak_rss)


_Session = Tuple[str, DiagnosticsInfo, Optional[int]]


def _prepare_session(
    client: LspClient, ctx: BenchContext, on_progress: ProgressFn
) -> Union[BenchFail, _Session]:
    """Initialize, open the target file and wait for diagnostics once.

    Returns the file URI, the diagnostics and the memory sampled after
    indexing, or a ``BenchFail`` carrying the memory at the point of failure.
    """
    try:
        client.initialize(ctx.root_uri)
        file_uri = client.open_file(ctx.target_file, language_id=ctx.language_id)
    except LspBenchError as e:
        return _fail(e, client, client.rss_kb())

    on_progress("waiting for diagnostics")
    try:
        diagnostics = client.wait_for_valid_diagnostics(ctx.index_timeout)
    except LspBenchError as e:
        return _fail(f"wait_for_diagnostics: {e}", client, client.rss_kb())
    return file_uri, diagnostics, client.rss_kb()


def bench_lsp_method(
    spec: ServerSpec,
    ctx: BenchContext,
    method: str,
    params_fn: ParamsFn,
    on_progress: ProgressFn = _noop,
) -> BenchResult:
    """Time one request method on a single persistent session.

    The session waits for diagnostics once before any timed request, so the
    numbers reflect steady-state query latency rather than initial indexing.
    """
    on_progress("spawning")
    client: Optional[LspClient] = None
    rss_kb: Optional[int] = None
    try:
        client = LspClient.spawn(spec, ctx.cwd, trace=ctx.trace)
        session = _prepare_session(client, ctx, on_progress)
        if isinstance(session, BenchFail):
            return session
        file_uri, diagnostics, rss_kb = session

        samples: List[Sample] = []
        for i in range(ctx.total):
            on_progress(iter_msg(i, ctx.warmup, ctx.iterations))
            params = params_fn(method, file_uri)
            start = time.perf_counter()
            req_id = client.send(method, params)
            resp = client.read_response(req_id, ctx.timeout)
            ms = _elapsed_ms(start)

            if i < ctx.warmup:
                continue
            if not is_valid_response(resp):
                return BenchInvalid(
                    first_response=resp, diagnostics=diagnostics, rss_kb=rss_kb
                )
            on_progress(f"{iter_msg(i, ctx.warmup, ctx.iterations)}  {ms:.1f}ms")
            samples.append(
                Sample(ms=ms, response=response_summary(resp, ctx.response_limit), raw=resp)
            )
        return BenchOk(samples=samples, diagnostics=diagnostics, rss_kb=rss_kb)
    except LspBenchError as e:
        return _fail(e, client, rss_kb)
    finally:
        if client is not None:
            client.close()


def bench_lsp_snapshots(
    spec: ServerSpec,
    ctx: BenchContext,
    method: str,
    snapshots: Sequence[ResolvedSnapshot],
    on_progress: ProgressFn = _noop,
) -> BenchResult:
    """Time one request after each didChange snapshot on a single session.

    Each snapshot is one measured iteration: its content replaces the open
    document (versions 2, 3, ...), then one request is sent at the
    snapshot's own position. There is no warmup and responses are recorded
    without validation.
    """
    on_progress("spawning")
    client: Optional[LspClient] = None
    rss_kb: Optional[int] = None
    try:
        client = LspClient.spawn(spec, ctx.cwd, trace=ctx.trace)
        session = _prepare_session(client, ctx, on_progress)
        if isinstance(session, BenchFail):
            return session
        file_uri, diagnostics, rss_kb = session

        total = len(snapshots)
        samples: List[Sample] = []
        for si, snap in enumerate(snapshots):
            on_progress(f"[{si + 1}/{total}] didChange {snap.path.name}")
            try:
                text = snap.path.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                return _fail(f"{snap.path}: {e.strerror or e}", client, rss_kb)
            # didOpen was version 1
            client.did_change(file_uri, si + 2, text)

            params = build_params(method, file_uri, snap.line, snap.col)
            start = time.perf_counter()
            req_id = client.send(method, params)
            resp = client.read_response(req_id, ctx.timeout)
            ms = _elapsed_ms(start)

            flag = "" if is_valid_response(resp) else "  (null)"
            on_progress(f"[{si + 1}/{total}] {snap.path.name}  {ms:.1f}ms{flag}")
            samples.append(
                Sample(ms=ms, response=response_summary(resp, ctx.response_limit), raw=resp)
            )
        return BenchOk(samples=samples, diagnostics=diagnostics, rss_kb=rss_kb)
    except LspBenchError as e:
        return _fail(e, client, rss_kb)
    finally:
        if client is not None:
            client.close()


def to_row(
    label: str, result: BenchResult, response_limit: int = DEFAULT_RESPONSE_LIMIT
) -> BenchRow:
    if isinstance(result, BenchOk):
        p50, p95, mean = compute_stats(s.ms for s in result.samples)
        return BenchRow(
            label=label,
            status=STATUS_OK,
            p50=p50,
            p95=p95,
            mean=mean,
            iterations=tuple(result.samples),
            summary=result.first_response,
            rss_kb=result.rss_kb,
        )
    if isinstance(result, BenchInvalid):
        return BenchRow(
            label=label,
            status=STATUS_INVALID,
            summary=response_summary(result.first_response, response_limit),
            rss_kb=result.rss_kb,
        )
    return BenchRow(
        label=label,
        status=STATUS_FAIL,
        error=result.error,
        logs=tuple(result.logs),
        rss_kb=result.rss_kb,
    )


BenchFn = Callable[[ServerSpec, ProgressFn], BenchResult]


def _rss_note(row: BenchRow) -> str:
    return f"  [{row.rss_kb / 1024:.1f} MB]" if row.rss_kb is not None else ""


def run_bench(
    servers: Sequence[ServerSpec],
    bench_fn: BenchFn,
    *,
    response_limit: int = DEFAULT_RESPONSE_LIMIT,
    echo: Callable[[str], None] = print,
    verbose: bool = False,
) -> List[BenchRow]:
    """Run ``bench_fn`` for each server in order and reduce the outcomes.

    A failure in one server never stops the others.
    """
    rows: List[BenchRow] = []
    for spec in servers:
        label = spec.label

        def on_progress(msg: str, _label: str = label) -> None:
            if verbose:
                echo(f"    {_label:<20} {msg}")

        try:
            result = bench_fn(spec, on_progress)
        except Exception as e:
            result = BenchFail(error=f"{type(e).__name__}: {e}")

        row = to_row(label, result, response_limit)
        if row.status == STATUS_OK:
            echo(
                f"  {label:<20} pass  {row.mean:.1f}ms mean  "
                f"({row.p50:.1f}ms p50, {row.p95:.1f}ms p95){_rss_note(row)}"
            )
        elif row.status == STATUS_INVALID:
            echo(f"  {label:<20} fail  invalid response{_rss_note(row)}")
        else:
            echo(f"  {label:<20} fail  {row.error}{_rss_note(row)}")
            for line in row.logs[-10:]:
                echo(f"      | {line}")
        rows.append(row)
    return rows


def rank_rows(rows: Sequence[BenchRow]) -> List[BenchRow]:
    """Ok rows with a meaningful response, fastest mean first.

    The sort is stable: equal means keep their input order.
    """
    ranked = [
        r for r in rows if r.status == STATUS_OK and has_meaningful_response(r.summary)
    ]
    return sorted(ranked, key=lambda r: r.mean)
