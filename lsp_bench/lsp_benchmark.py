#!/usr/bin/env python3
"""Benchmark LSP servers against each other over stdio.

What it does
------------
1) Load the server list and fixture settings from ``benchmark.yaml``.
2) Skip servers whose command is not installed; detect versions of the rest.
3) For each selected benchmark, drive every server in turn:
   - ``initialize``: spawn + handshake, fresh process per iteration.
   - ``textDocument/diagnostic``: didOpen -> first non-empty diagnostics,
     fresh process per iteration.
   - request methods (hover, definition, ...): one session per server,
     diagnostics awaited once, then warmup + measured requests.
   - methods with ``didChange`` snapshots: one timed request after each
     edit, on one session per server.
4) Write one JSON snapshot (plus partial snapshots while running).
5) With ``--verify``, check definition-style responses against the
   configured ``expect`` locations; any mismatch exits non-zero.

Example
-------
python -m lsp_bench.lsp_benchmark hover definition -n 20 -w 3 -t 5
"""

from __future__ import annotations

import argparse
import dataclasses
import shutil
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from lsp_bench.benchmark.config import (
    DEFAULT_CONFIG_PATH,
    BenchConfig,
    load_config,
    resolve_benchmarks,
    write_template,
)
from lsp_bench.benchmark.methods import (
    DIAGNOSTIC,
    INITIALIZE,
    MethodConfig,
    ParamsFn,
    make_params_fn,
)
from lsp_bench.benchmark.output import (
    detect_version,
    is_available,
    print_summary,
    save_json,
)
from lsp_bench.benchmark.runner import (
    BenchContext,
    BenchFn,
    BenchRow,
    ResolvedSnapshot,
    bench_diagnostics,
    bench_lsp_method,
    bench_lsp_snapshots,
    bench_spawn,
    run_bench,
)
from lsp_bench.benchmark.verify import VerifyTally, report_tally, verify_rows
from lsp_bench.client import path_to_uri
from lsp_bench.errors import ConfigError
from lsp_bench.transport import ServerSpec


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Benchmark framework for LSP servers")
    ap.add_argument(
        "benchmarks",
        nargs="*",
        help=(
            "Benchmarks to run, e.g. 'initialize', 'hover', 'textDocument/definition', "
            "or 'all'. Defaults to the config's list (all if empty)."
        ),
    )
    ap.add_argument(
        "-c",
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help=f"Config file path (default: {DEFAULT_CONFIG_PATH})",
    )
    ap.add_argument(
        "-n", "--iterations", type=int, default=None, help="Measured iterations"
    )
    ap.add_argument("-w", "--warmup", type=int, default=None, help="Warmup iterations")
    ap.add_argument(
        "-t",
        "--timeout",
        type=float,
        default=None,
        help="Per-request timeout in seconds",
    )
    ap.add_argument(
        "--index-timeout",
        type=float,
        default=None,
        help="Timeout in seconds for diagnostics after didOpen",
    )
    ap.add_argument(
        "-o", "--output", type=Path, default=None, help="Output directory for JSON"
    )
    ap.add_argument(
        "--trace", action="store_true", help="Verbose LSP wire trace to stderr"
    )
    ap.add_argument(
        "-v", "--verbose", action="store_true", help="Print per-iteration progress"
    )
    ap.add_argument(
        "--init",
        action="store_true",
        help="Write a template config to --config and exit",
    )
    ap.add_argument(
        "--verify",
        action="store_true",
        help="Check responses against the expect fields in the config",
    )
    return ap.parse_args(argv)


def apply_overrides(config: BenchConfig, args: argparse.Namespace) -> BenchConfig:
    """Command-line flags win over the config file."""
    changes = {}
    if args.iterations is not None:
        if args.iterations < 1:
            raise ConfigError("--iterations must be >= 1")
        changes["iterations"] = args.iterations
    if args.warmup is not None:
        if args.warmup < 0:
            raise ConfigError("--warmup must be >= 0")
        changes["warmup"] = args.warmup
    if args.timeout is not None:
        if args.timeout <= 0:
            raise ConfigError("--timeout must be > 0")
        changes["timeout"] = args.timeout
    if args.index_timeout is not None:
        if args.index_timeout <= 0:
            raise ConfigError("--index-timeout must be > 0")
        changes["index_timeout"] = args.index_timeout
    if args.output is not None:
        changes["output"] = args.output
    return dataclasses.replace(config, **changes)


def resolve_snapshots(
    method_config: Optional[MethodConfig], cwd: Path
) -> List[ResolvedSnapshot]:
    if method_config is None:
        return []
    return [
        ResolvedSnapshot(path=cwd / s.file, line=s.line, col=s.col, expect=s.expect)
        for s in method_config.did_change
    ]


def bench_fn_for(
    name: str,
    ctx: BenchContext,
    params_fn: ParamsFn,
    snapshots: Optional[List[ResolvedSnapshot]] = None,
) -> BenchFn:
    if name == INITIALIZE:
        return lambda spec, on_progress: bench_spawn(spec, ctx, on_progress)
    if name == DIAGNOSTIC:
        return lambda spec, on_progress: bench_diagnostics(spec, ctx, on_progress)
    if snapshots:
        return lambda spec, on_progress: bench_lsp_snapshots(
            spec, ctx, name, snapshots, on_progress
        )
    return lambda spec, on_progress: bench_lsp_method(
        spec, ctx, name, params_fn, on_progress
    )


def select_servers(servers: List[ServerSpec]) -> List[ServerSpec]:
    available: List[ServerSpec] = []
    for spec in servers:
        if is_available(spec.cmd):
            available.append(spec)
        else:
            print(f"  skip {spec.label} -- not found")
    return available


def run_benchmarks(
    config: BenchConfig,
    benchmarks: List[str],
    *,
    trace: bool = False,
    verbose: bool = False,
    tally: Optional[VerifyTally] = None,
) -> Tuple[List[Tuple[str, List[BenchRow]]], Optional[Path]]:
    """Run every selected benchmark and write the snapshot.

    With a ``tally``, request benchmark rows are checked against their
    expectations as they finish.

    Returns the per-benchmark rows and the path of the final JSON file (None
    when nothing ran).
    """
    cwd = config.project.resolve()
    servers = select_servers(config.servers)

    print("\nDetecting versions...")
    versions: List[Tuple[str, str]] = []
    for spec in servers:
        version = detect_version(spec.cmd)
        print(f"  {spec.label} = {version}")
        versions.append((spec.label, version))

    ctx = BenchContext(
        cwd=cwd,
        root_uri=path_to_uri(cwd),
        target_file=(cwd / config.file).resolve(),
        warmup=config.warmup,
        iterations=config.iterations,
        timeout=float(config.timeout),
        index_timeout=float(config.index_timeout),
        response_limit=config.response_limit,
        language_id=config.language_id,
        trace=trace,
    )
    params_fn = make_params_fn(config.methods, config.line, config.col)
    partial_dir = config.output / "partial"

    results: List[Tuple[str, List[BenchRow]]] = []
    for num, name in enumerate(benchmarks, 1):
        print(f"\n[{num}/{len(benchmarks)}] {name}")
        method_config = config.methods.get(name)
        snapshots = resolve_snapshots(method_config, cwd)
        if snapshots:
            print(f"  edit {len(snapshots)} snapshot(s) via didChange")
        rows = run_bench(
            servers,
            bench_fn_for(name, ctx, params_fn, snapshots),
            response_limit=config.response_limit,
            verbose=verbose,
        )
        if tally is not None and name not in (INITIALIZE, DIAGNOSTIC):
            verify_rows(rows, method_config, snapshots, tally)
        results.append((name, rows))
        saved = save_json(results, versions, servers, config, partial_dir)
        print(f"  saved {saved}")

    if not results:
        return results, None

    output_file = save_json(results, versions, servers, config, config.output)
    shutil.rmtree(partial_dir, ignore_errors=True)
    return results, output_file


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    if args.init:
        try:
            write_template(args.config)
        except ConfigError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        print(f"Created {args.config}")
        print("Edit the file to configure your servers, then run: lsp-bench")
        return 0

    try:
        config = apply_overrides(load_config(args.config), args)
        benchmarks = resolve_benchmarks(args.benchmarks or config.benchmarks)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not config.project.is_dir():
        print(f"Error: project directory not found: {config.project}", file=sys.stderr)
        return 1
    if not config.target_file.is_file():
        print(f"Error: benchmark file not found: {config.target_file}", file=sys.stderr)
        return 1

    print(f"  config {args.config}")
    print(f"  file {config.file}  (line {config.line}, col {config.col})")

    tally = VerifyTally() if args.verify else None
    results, output_file = run_benchmarks(
        config, benchmarks, trace=args.trace, verbose=args.verbose, tally=tally
    )
    if output_file is not None:
        print(f"\n  -> {output_file}")
        print_summary(results)
    if tally is not None and not report_tally(tally):
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
