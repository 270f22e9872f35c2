"""Tests for configuration loading and the benchmark catalogue."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

import sys

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).parent.parent))

from lsp_bench.benchmark.config import (
    DEFAULT_COL,
    DEFAULT_ITERATIONS,
    DEFAULT_LINE,
    load_config,
    parse_config,
    resolve_benchmarks,
    write_template,
)
from lsp_bench.benchmark.methods import (
    ALL_BENCHMARKS,
    RENAME_TARGET,
    ExpectConfig,
    FileSnapshot,
    MethodConfig,
    make_params_fn,
    resolve_benchmark_name,
)
from lsp_bench.errors import ConfigError


def _minimal(**extra: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "project": "examples/v4-core",
        "file": "src/libraries/Pool.sol",
        "servers": [{"label": "mmsaki", "cmd": "solidity-language-server", "args": ["--stdio"]}],
    }
    data.update(extra)
    return data


class TestParseConfig:
    """Tests for parse_config function."""

    def test_defaults(self) -> None:
        config = parse_config(_minimal())
        assert config.line == DEFAULT_LINE
        assert config.col == DEFAULT_COL
        assert config.iterations == DEFAULT_ITERATIONS
        assert config.warmup == 2
        assert config.timeout == 10
        assert config.index_timeout == 15
        assert config.output == Path("benchmarks")
        assert config.response_limit == 80
        assert config.language_id == "solidity"
        assert config.benchmarks == []
        assert config.target_file == Path("examples/v4-core/src/libraries/Pool.sol")

    def test_server_fields(self) -> None:
        config = parse_config(
            _minimal(
                servers=[
                    {
                        "label": "solc",
                        "cmd": "solc",
                        "args": ["--lsp"],
                        "description": "Official compiler",
                        "link": "https://soliditylang.org",
                    }
                ]
            )
        )
        spec = config.servers[0]
        assert spec.label == "solc"
        assert spec.args == ("--lsp",)
        assert spec.description == "Official compiler"
        assert spec.link == "https://soliditylang.org"

    @pytest.mark.parametrize("missing", ["project", "file"])
    def test_required_keys(self, missing: str) -> None:
        data = _minimal()
        del data[missing]
        with pytest.raises(ConfigError):
            parse_config(data)

    def test_server_needs_cmd(self) -> None:
        with pytest.raises(ConfigError):
            parse_config(_minimal(servers=[{"label": "x"}]))

    def test_servers_must_be_list(self) -> None:
        with pytest.raises(ConfigError):
            parse_config(_minimal(servers={"label": "x"}))

    def test_iterations_at_least_one(self) -> None:
        with pytest.raises(ConfigError):
            parse_config(_minimal(iterations=0))

    @pytest.mark.parametrize("key", ["timeout", "index_timeout"])
    def test_rejects_zero_timeout(self, key: str) -> None:
        with pytest.raises(ConfigError) as exc_info:
            parse_config(_minimal(**{key: 0}))
        assert key in str(exc_info.value)

    def test_fractional_timeout(self) -> None:
        assert parse_config(_minimal(timeout=0.5)).timeout == 0.5

    def test_rejects_non_numeric_timeout(self) -> None:
        with pytest.raises(ConfigError):
            parse_config(_minimal(timeout="fast"))

    def test_response_limit(self) -> None:
        assert parse_config(_minimal(response="full")).response_limit == 0
        assert parse_config(_minimal(response=200)).response_limit == 200
        with pytest.raises(ConfigError):
            parse_config(_minimal(response="short"))

    def test_method_overrides(self) -> None:
        """Test that method keys accept short names."""
        config = parse_config(
            _minimal(methods={"completion": {"line": 105, "col": 28, "trigger": "."}})
        )
        assert config.methods == {
            "textDocument/completion": MethodConfig(line=105, col=28, trigger=".")
        }

    def test_unknown_method_override(self) -> None:
        with pytest.raises(ConfigError):
            parse_config(_minimal(methods={"textDocument/teleport": {}}))

    def test_expect_and_did_change(self) -> None:
        config = parse_config(
            _minimal(
                methods={
                    "definition": {
                        "expect": {"file": "SafeCast.sol", "line": 39},
                        "didChange": [
                            {"file": "src/Pool.v2.sol", "line": 107, "col": 15},
                            {
                                "file": "src/Pool.v3.sol",
                                "line": 110,
                                "col": 15,
                                "expect": {"line": 41},
                            },
                        ],
                    }
                }
            )
        )
        method = config.methods["textDocument/definition"]
        assert method.expect == ExpectConfig(file="SafeCast.sol", line=39)
        assert method.did_change == [
            FileSnapshot(file="src/Pool.v2.sol", line=107, col=15),
            FileSnapshot(
                file="src/Pool.v3.sol", line=110, col=15, expect=ExpectConfig(line=41)
            ),
        ]

    def test_did_change_needs_position(self) -> None:
        with pytest.raises(ConfigError) as exc_info:
            parse_config(
                _minimal(methods={"definition": {"didChange": [{"file": "a.sol", "line": 1}]}})
            )
        assert "didChange[0]" in str(exc_info.value)

    def test_legacy_trigger_character(self) -> None:
        """Test that a top-level trigger_character feeds the completion trigger."""
        config = parse_config(_minimal(trigger_character="."))
        assert config.methods["textDocument/completion"].trigger == "."

    def test_method_trigger_wins_over_legacy(self) -> None:
        config = parse_config(
            _minimal(
                trigger_character=".",
                methods={"completion": {"line": 5, "trigger": ":"}},
            )
        )
        completion = config.methods["textDocument/completion"]
        assert completion.trigger == ":"
        assert completion.line == 5

    def test_legacy_trigger_fills_existing_override(self) -> None:
        config = parse_config(
            _minimal(trigger_character=".", methods={"completion": {"line": 5}})
        )
        assert config.methods["textDocument/completion"] == MethodConfig(line=5, trigger=".")


class TestLoadConfig:
    """Tests for load_config and write_template functions."""

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            load_config(tmp_path / "benchmark.json")

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "benchmark.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_loads_file(self, tmp_path: Path) -> None:
        path = tmp_path / "benchmark.json"
        path.write_text(json.dumps(_minimal(iterations=3)), encoding="utf-8")
        assert load_config(path).iterations == 3

    def test_loads_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "benchmark.yaml"
        path.write_text(
            "project: examples/v4-core\n"
            "file: src/libraries/Pool.sol\n"
            "iterations: 4\n"
            "trigger_character: '.'\n"
            "methods:\n"
            "  textDocument/definition:\n"
            "    expect: {file: SafeCast.sol, line: 39}\n"
            "servers:\n"
            "  - label: mmsaki\n"
            "    cmd: solidity-language-server\n"
            "    args: [--stdio]\n",
            encoding="utf-8",
        )
        config = load_config(path)
        assert config.iterations == 4
        assert config.servers[0].args == ("--stdio",)
        assert config.methods["textDocument/definition"].expect == ExpectConfig(
            file="SafeCast.sol", line=39
        )
        assert config.methods["textDocument/completion"].trigger == "."

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "benchmark.yaml"
        path.write_text("servers: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigError) as exc_info:
            load_config(path)
        assert "Error parsing config" in str(exc_info.value)

    def test_empty_yaml(self, tmp_path: Path) -> None:
        """Test that an empty file is a config error, not a crash."""
        path = tmp_path / "benchmark.yaml"
        path.write_text("", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_template_round_trips(self, tmp_path: Path) -> None:
        """Test that the generated template is itself a valid config."""
        path = tmp_path / "benchmark.yaml"
        write_template(path)
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        assert data["benchmarks"] == ["all"]
        config = load_config(path)
        assert config.servers[0].label == "my-server"
        assert config.methods["textDocument/completion"].trigger == "."

    def test_json_template_round_trips(self, tmp_path: Path) -> None:
        path = tmp_path / "benchmark.json"
        write_template(path)
        assert json.loads(path.read_text(encoding="utf-8"))["iterations"] == DEFAULT_ITERATIONS
        assert load_config(path).servers[0].cmd == "my-language-server"

    def test_template_does_not_overwrite(self, tmp_path: Path) -> None:
        path = tmp_path / "benchmark.json"
        path.write_text("{}", encoding="utf-8")
        with pytest.raises(ConfigError):
            write_template(path)
        assert path.read_text(encoding="utf-8") == "{}"


class TestResolveBenchmarks:
    """Tests for resolve_benchmarks and resolve_benchmark_name functions."""

    def test_empty_and_all_select_everything(self) -> None:
        assert resolve_benchmarks([]) == ALL_BENCHMARKS
        assert resolve_benchmarks(["hover", "all"]) == ALL_BENCHMARKS

    def test_catalogue_order(self) -> None:
        """Test that selection order does not change run order."""
        assert resolve_benchmarks(["hover", "init", "diagnostics"]) == [
            "initialize",
            "textDocument/diagnostic",
            "textDocument/hover",
        ]

    def test_unknown_name(self) -> None:
        with pytest.raises(ConfigError) as exc_info:
            resolve_benchmarks(["hover", "teleport"])
        assert "teleport" in str(exc_info.value)

    def test_name_forms(self) -> None:
        assert resolve_benchmark_name("textDocument/hover") == "textDocument/hover"
        assert resolve_benchmark_name("semanticTokens/full") == "textDocument/semanticTokens/full"
        assert resolve_benchmark_name("symbol") == "workspace/symbol"
        assert resolve_benchmark_name("nope") is None


class TestMakeParamsFn:
    """Tests for make_params_fn function."""

    URI = "file:///project/src/Pool.sol"

    def test_position_from_globals(self) -> None:
        params = make_params_fn({}, 102, 15)("textDocument/hover", self.URI)
        assert params == {
            "textDocument": {"uri": self.URI},
            "position": {"line": 102, "character": 15},
        }

    def test_override_and_trigger(self) -> None:
        methods = {"textDocument/completion": MethodConfig(line=105, col=28, trigger=".")}
        params = make_params_fn(methods, 102, 15)("textDocument/completion", self.URI)
        assert params["position"] == {"line": 105, "character": 28}
        assert params["context"] == {"triggerKind": 2, "triggerCharacter": "."}

    def test_partial_override(self) -> None:
        methods = {"textDocument/definition": MethodConfig(col=3)}
        params = make_params_fn(methods, 102, 15)("textDocument/definition", self.URI)
        assert params["position"] == {"line": 102, "character": 3}

    def test_method_shapes(self) -> None:
        params_fn = make_params_fn({}, 1, 2)
        assert params_fn("textDocument/references", self.URI)["context"] == {
            "includeDeclaration": True
        }
        assert params_fn("textDocument/rename", self.URI)["newName"] == RENAME_TARGET
        assert params_fn("workspace/symbol", self.URI) == {"query": ""}
        assert params_fn("textDocument/documentSymbol", self.URI) == {
            "textDocument": {"uri": self.URI}
        }
        assert params_fn("textDocument/selectionRange", self.URI)["positions"] == [
            {"line": 1, "character": 2}
        ]
        assert "options" in params_fn("textDocument/formatting", self.URI)
