"""Result snapshots, server probing and the end-of-run summary."""

from __future__ import annotations

import json
import subprocess
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from tabulate import tabulate

from lsp_bench.benchmark.config import BenchConfig
from lsp_bench.benchmark.runner import STATUS_OK, BenchRow, rank_rows
from lsp_bench.transport import ServerSpec, resolve_executable


BenchmarkResults = Sequence[Tuple[str, Sequence[BenchRow]]]

VERSION_TIMEOUT_S = 10


def _which(cmd: str) -> Optional[str]:
    which_cmd = "where" if sys.platform == "win32" else "which"
    try:
        result = subprocess.run(
            [which_cmd, cmd],
            capture_output=True,
            text=True,
        )
    except OSError:
        return None
    if result.returncode != 0:
        return None
    lines = result.stdout.strip().splitlines()
    return lines[0].strip() if lines else None


def is_available(cmd: str) -> bool:
    """Whether a server command can be launched.

    Paths must exist on disk; bare names must resolve on PATH.
    """
    resolved = resolve_executable(cmd)
    if Path(resolved).is_absolute():
        return Path(resolved).exists()
    return _which(cmd) is not None


def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""


def _version_from_package_json(binary: Path) -> Optional[str]:
    # npm-installed servers: walk up from the real binary to its package.json
    directory = binary
    for _ in range(10):
        if directory.parent == directory:
            break
        directory = directory.parent
        pkg = directory / "package.json"
        if not pkg.exists():
            continue
        try:
            data: Dict[str, Any] = json.loads(pkg.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            continue
        version = data.get("version")
        if isinstance(version, str):
            return f"{data.get('name') or binary.name} {version}"
    return None


def detect_version(cmd: str) -> str:
    """Best-effort version string for a server command."""
    executable = resolve_executable(cmd)
    try:
        result = subprocess.run(
            [executable, "--version"],
            capture_output=True,
            text=True,
            timeout=VERSION_TIMEOUT_S,
        )
        if result.returncode == 0:
            line = _first_line(result.stdout) or _first_line(result.stderr)
            if line:
                return line
    except (subprocess.TimeoutExpired, OSError):
        pass

    located = executable if Path(executable).is_absolute() else _which(cmd)
    if located:
        version = _version_from_package_json(Path(located).resolve())
        if version:
            return version
    return "unknown"


def build_report(
    results: BenchmarkResults,
    versions: Sequence[Tuple[str, str]],
    servers: Sequence[ServerSpec],
    config: BenchConfig,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Assemble the JSON document consumed by report generators."""
    if now is None:
        now = datetime.now(timezone.utc)
    by_label = {s.label: s for s in servers}

    json_servers: List[Dict[str, Any]] = []
    for label, version in versions:
        entry: Dict[str, Any] = {"name": label, "version": version}
        spec = by_label.get(label)
        if spec is not None:
            if spec.description:
                entry["description"] = spec.description
            if spec.link:
                entry["link"] = spec.link
        json_servers.append(entry)

    settings: Dict[str, Any] = {
        "iterations": config.iterations,
        "warmup": config.warmup,
        "timeout_secs": config.timeout,
        "index_timeout_secs": config.index_timeout,
        "project": str(config.project),
        "file": config.file,
        "line": config.line,
        "col": config.col,
    }
    if config.methods:
        methods: Dict[str, Dict[str, Any]] = {}
        for name, override in config.methods.items():
            obj: Dict[str, Any] = {}
            if override.line is not None:
                obj["line"] = override.line
            if override.col is not None:
                obj["col"] = override.col
            if override.trigger is not None:
                obj["trigger"] = override.trigger
            if override.did_change:
                obj["didChange"] = [s.file for s in override.did_change]
            methods[name] = obj
        settings["methods"] = methods

    return {
        "timestamp": now.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "date": now.strftime("%Y-%m-%d"),
        "settings": settings,
        "servers": json_servers,
        "benchmarks": [
            {"name": name, "servers": [row.to_json() for row in rows]}
            for name, rows in results
        ],
    }


def save_json(
    results: BenchmarkResults,
    versions: Sequence[Tuple[str, str]],
    servers: Sequence[ServerSpec],
    config: BenchConfig,
    output_dir: Path,
    *,
    now: Optional[datetime] = None,
) -> Path:
    """Write one snapshot file named after the run timestamp."""
    report = build_report(results, versions, servers, config, now=now)
    output_dir.mkdir(parents=True, exist_ok=True)
    output_file = output_dir / f"{report['timestamp'].replace(':', '-')}.json"
    with open(output_file, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2)
    return output_file


def _fmt_ms(row: BenchRow, value: float) -> str:
    return f"{value:.1f}" if row.status == STATUS_OK else "-"


def format_summary(name: str, rows: Sequence[BenchRow]) -> str:
    """Render one benchmark's rows as a plain-text table, fastest first."""
    ranks = {id(row): i for i, row in enumerate(rank_rows(rows), 1)}
    table = []
    for row in rows:
        table.append(
            [
                ranks.get(id(row), ""),
                row.label,
                row.status if row.status != STATUS_OK or id(row) in ranks else "ok (empty)",
                _fmt_ms(row, row.mean),
                _fmt_ms(row, row.p50),
                _fmt_ms(row, row.p95),
            ]
        )
    table.sort(key=lambda r: (r[0] == "", r[0] if r[0] != "" else 0))
    return f"{name}\n" + tabulate(
        table,
        headers=["Rank", "Server", "Status", "Mean (ms)", "p50 (ms)", "p95 (ms)"],
        disable_numparse=True,
    )


def print_summary(results: BenchmarkResults) -> None:
    print("\nSummary:")
    print("-" * 70)
    for name, rows in results:
        print(format_summary(name, rows))
        print()
