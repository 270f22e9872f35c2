"""Benchmark configuration loaded from a YAML file.

Example ``benchmark.yaml``::

    project: examples/v4-core
    file: src/libraries/Pool.sol
    line: 102
    col: 15
    iterations: 10
    warmup: 2
    benchmarks: [initialize, hover]
    methods:
      textDocument/completion: {line: 105, col: 28, trigger: "."}
      textDocument/definition:
        expect: {file: SafeCast.sol, line: 39}
        didChange:
          - {file: src/libraries/Pool.v2.sol, line: 107, col: 15}
    servers:
      - label: mmsaki
        cmd: solidity-language-server
        args: [--stdio]

Files ending in ``.json`` are read as JSON with the same schema.
"""

from __future__ import annotations

import dataclasses
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from lsp_bench.benchmark.methods import (
    ALL_BENCHMARKS,
    ExpectConfig,
    FileSnapshot,
    MethodConfig,
    resolve_benchmark_name,
)
from lsp_bench.benchmark.runner import DEFAULT_RESPONSE_LIMIT
from lsp_bench.client import DEFAULT_LANGUAGE_ID
from lsp_bench.errors import ConfigError
from lsp_bench.transport import ServerSpec


DEFAULT_CONFIG_PATH = Path("benchmark.yaml")

DEFAULT_LINE = 102
DEFAULT_COL = 15
DEFAULT_ITERATIONS = 10
DEFAULT_WARMUP = 2
DEFAULT_TIMEOUT_S = 10
DEFAULT_INDEX_TIMEOUT_S = 15
DEFAULT_OUTPUT_DIR = "benchmarks"

COMPLETION = "textDocument/completion"


@dataclasses.dataclass
class BenchConfig:
    project: Path
    file: str
    servers: List[ServerSpec]
    line: int = DEFAULT_LINE
    col: int = DEFAULT_COL
    iterations: int = DEFAULT_ITERATIONS
    warmup: int = DEFAULT_WARMUP
    timeout: float = DEFAULT_TIMEOUT_S
    index_timeout: float = DEFAULT_INDEX_TIMEOUT_S
    output: Path = Path(DEFAULT_OUTPUT_DIR)
    benchmarks: List[str] = dataclasses.field(default_factory=list)
    # 0 means "full": never truncate response summaries
    response_limit: int = DEFAULT_RESPONSE_LIMIT
    language_id: str = DEFAULT_LANGUAGE_ID
    methods: Dict[str, MethodConfig] = dataclasses.field(default_factory=dict)

    @property
    def target_file(self) -> Path:
        return self.project / self.file


TEMPLATE_YAML = f"""\
# lsp-bench configuration

# Project root; every server is started here.
project: .
# File opened for every benchmark, relative to project.
file: src/Contract.sol
# Default 0-based request position.
line: {DEFAULT_LINE}
col: {DEFAULT_COL}

iterations: {DEFAULT_ITERATIONS}
warmup: {DEFAULT_WARMUP}
# Seconds per request, and for diagnostics after didOpen.
timeout: {DEFAULT_TIMEOUT_S}
index_timeout: {DEFAULT_INDEX_TIMEOUT_S}

output: {DEFAULT_OUTPUT_DIR}
benchmarks: [all]
# Response summary length in characters, or "full".
response: {DEFAULT_RESPONSE_LIMIT}
language_id: {DEFAULT_LANGUAGE_ID}

methods:
  textDocument/completion:
    trigger: "."

servers:
  - label: my-server
    description: ""
    link: ""
    cmd: my-language-server
    args: [--stdio]
"""


def _number(
    data: Dict[str, Any], key: str, default: float, *, minimum: float, exclusive: bool = False
) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"'{key}' must be a number, got {value!r}")
    if value < minimum or (exclusive and value == minimum):
        op = ">" if exclusive else ">="
        raise ConfigError(f"'{key}' must be {op} {minimum}, got {value}")
    return value


def _int(data: Dict[str, Any], key: str, default: int, *, minimum: int = 0) -> int:
    value = _number(data, key, default, minimum=minimum)
    if not isinstance(value, int):
        raise ConfigError(f"'{key}' must be an integer, got {value!r}")
    return value


def _opt_int(raw: Dict[str, Any], key: str, where: str) -> Optional[int]:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(f"{where}: '{key}' must be a non-negative integer")
    return value


def _response_limit(value: Any) -> int:
    """``"full"`` -> 0 (no limit), a number -> that many chars, null -> default."""
    if value is None:
        return DEFAULT_RESPONSE_LIMIT
    if value == "full":
        return 0
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    raise ConfigError('response must be "full" or a non-negative number')


def _parse_server(raw: Any, index: int) -> ServerSpec:
    if not isinstance(raw, dict):
        raise ConfigError(f"servers[{index}] must be an object")
    label = raw.get("label")
    cmd = raw.get("cmd")
    if not label or not isinstance(label, str):
        raise ConfigError(f"servers[{index}] needs a 'label'")
    if not cmd or not isinstance(cmd, str):
        raise ConfigError(f"server '{label}' needs a 'cmd'")
    args = raw.get("args") or []
    if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
        raise ConfigError(f"server '{label}': 'args' must be a list of strings")
    return ServerSpec(
        label=label,
        cmd=cmd,
        args=tuple(args),
        description=str(raw.get("description") or ""),
        link=str(raw.get("link") or ""),
    )


def _parse_expect(raw: Any, where: str) -> Optional[ExpectConfig]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: 'expect' must be an object")
    file = raw.get("file")
    if file is not None and not isinstance(file, str):
        raise ConfigError(f"{where}: expect 'file' must be a string")
    return ExpectConfig(file=file, line=_opt_int(raw, "line", f"{where} expect"))


def _parse_snapshots(raw: Any, where: str) -> List[FileSnapshot]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConfigError(f"{where}: 'didChange' must be a list")
    snapshots: List[FileSnapshot] = []
    for i, item in enumerate(raw):
        snap_where = f"{where} didChange[{i}]"
        if not isinstance(item, dict):
            raise ConfigError(f"{snap_where} must be an object")
        file = item.get("file")
        line = _opt_int(item, "line", snap_where)
        col = _opt_int(item, "col", snap_where)
        if not isinstance(file, str) or not file or line is None or col is None:
            raise ConfigError(f"{snap_where} needs 'file', 'line' and 'col'")
        snapshots.append(
            FileSnapshot(
                file=file,
                line=line,
                col=col,
                expect=_parse_expect(item.get("expect"), snap_where),
            )
        )
    return snapshots


def _parse_methods(raw: Any) -> Dict[str, MethodConfig]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError("'methods' must be an object keyed by method name")
    methods: Dict[str, MethodConfig] = {}
    for name, override in raw.items():
        method = resolve_benchmark_name(str(name))
        if method is None:
            raise ConfigError(f"methods: unknown method '{name}'")
        if not isinstance(override, dict):
            raise ConfigError(f"methods['{name}'] must be an object")
        where = f"methods['{name}']"
        trigger = override.get("trigger")
        methods[method] = MethodConfig(
            line=_opt_int(override, "line", where),
            col=_opt_int(override, "col", where),
            trigger=str(trigger) if trigger is not None else None,
            expect=_parse_expect(override.get("expect"), where),
            did_change=_parse_snapshots(override.get("didChange"), where),
        )
    return methods


def _apply_legacy_trigger(methods: Dict[str, MethodConfig], trigger: Any) -> None:
    # top-level trigger_character predates per-method config; methods win
    if trigger is None:
        return
    completion = methods.setdefault(COMPLETION, MethodConfig())
    if completion.trigger is None:
        completion.trigger = str(trigger)


def resolve_benchmarks(names: Sequence[str]) -> List[str]:
    """Canonical benchmark names in catalogue order.

    An empty selection or ``all`` selects every benchmark.

    Raises:
        ConfigError: a name is not a known benchmark.
    """
    if not names or any(n == "all" for n in names):
        return list(ALL_BENCHMARKS)
    selected = set()
    for name in names:
        method = resolve_benchmark_name(name)
        if method is None:
            raise ConfigError(f"unknown benchmark '{name}'")
        selected.add(method)
    return [b for b in ALL_BENCHMARKS if b in selected]


def parse_config(data: Dict[str, Any]) -> BenchConfig:
    if not isinstance(data, dict):
        raise ConfigError("config must be a mapping")
    for key in ("project", "file"):
        if not isinstance(data.get(key), str) or not data[key]:
            raise ConfigError(f"'{key}' is required")

    raw_servers = data.get("servers")
    if not isinstance(raw_servers, list):
        raise ConfigError("'servers' must be a list")
    servers = [_parse_server(raw, i) for i, raw in enumerate(raw_servers)]

    benchmarks = data.get("benchmarks") or []
    if not isinstance(benchmarks, list):
        raise ConfigError("'benchmarks' must be a list")

    methods = _parse_methods(data.get("methods"))
    _apply_legacy_trigger(methods, data.get("trigger_character"))

    return BenchConfig(
        project=Path(data["project"]),
        file=data["file"],
        servers=servers,
        line=_int(data, "line", DEFAULT_LINE),
        col=_int(data, "col", DEFAULT_COL),
        iterations=_int(data, "iterations", DEFAULT_ITERATIONS, minimum=1),
        warmup=_int(data, "warmup", DEFAULT_WARMUP),
        timeout=_number(data, "timeout", DEFAULT_TIMEOUT_S, minimum=0, exclusive=True),
        index_timeout=_number(
            data, "index_timeout", DEFAULT_INDEX_TIMEOUT_S, minimum=0, exclusive=True
        ),
        output=Path(data.get("output") or DEFAULT_OUTPUT_DIR),
        benchmarks=[str(b) for b in benchmarks],
        response_limit=_response_limit(data.get("response")),
        language_id=str(data.get("language_id") or DEFAULT_LANGUAGE_ID),
        methods=methods,
    )


def load_config(path: Optional[Path] = None) -> BenchConfig:
    """Load and validate a configuration file.

    Raises:
        ConfigError: the file is missing, does not parse, or fails validation.
    """
    if path is None:
        path = DEFAULT_CONFIG_PATH
    try:
        with open(path, encoding="utf-8") as f:
            if path.suffix == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Error reading config {path}: {e.strerror or e}") from e
    except (ValueError, yaml.YAMLError) as e:
        raise ConfigError(f"Error parsing config {path}: {e}") from e
    return parse_config(data)


def write_template(path: Path) -> None:
    """Write a starter configuration; refuses to overwrite an existing file."""
    if path.exists():
        raise ConfigError(f"{path} already exists")
    if path.suffix == ".json":
        text = json.dumps(yaml.safe_load(TEMPLATE_YAML), indent=2) + "\n"
    else:
        text = TEMPLATE_YAML
    path.write_text(text, encoding="utf-8")
