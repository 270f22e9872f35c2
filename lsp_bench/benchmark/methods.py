"""Benchmark catalogue and request parameters for each LSP method."""

from __future__ import annotations

import dataclasses
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from lsp_bench.protocol import JsonObj


INITIALIZE = "initialize"
DIAGNOSTIC = "textDocument/diagnostic"

# Request/response methods, benchmarked on one persistent session each.
REQUEST_METHODS: List[str] = [
    "textDocument/definition",
    "textDocument/declaration",
    "textDocument/typeDefinition",
    "textDocument/implementation",
    "textDocument/hover",
    "textDocument/references",
    "textDocument/completion",
    "textDocument/signatureHelp",
    "textDocument/rename",
    "textDocument/prepareRename",
    "textDocument/documentSymbol",
    "textDocument/documentLink",
    "textDocument/formatting",
    "textDocument/foldingRange",
    "textDocument/selectionRange",
    "textDocument/codeLens",
    "textDocument/inlayHint",
    "textDocument/semanticTokens/full",
    "textDocument/documentColor",
    "workspace/symbol",
]

ALL_BENCHMARKS: List[str] = [INITIALIZE, DIAGNOSTIC, *REQUEST_METHODS]

_ALIASES: Dict[str, str] = {
    "init": INITIALIZE,
    "diagnostics": DIAGNOSTIC,
    "symbol": "workspace/symbol",
}

RENAME_TARGET = "__lsp_bench_rename__"


@dataclasses.dataclass
class ExpectConfig:
    """Expected location in a definition-style response, checked by --verify."""

    # Suffix the response URI must end with, e.g. "SafeCast.sol"
    file: Optional[str] = None
    # 0-based start line of the returned range
    line: Optional[int] = None


@dataclasses.dataclass
class FileSnapshot:
    """File content sent via didChange, with the position to query after it."""

    file: str
    line: int
    col: int
    expect: Optional[ExpectConfig] = None


@dataclasses.dataclass
class MethodConfig:
    """Per-method overrides of the request position."""

    line: Optional[int] = None
    col: Optional[int] = None
    # Completion trigger character, e.g. "."
    trigger: Optional[str] = None
    expect: Optional[ExpectConfig] = None
    did_change: List[FileSnapshot] = dataclasses.field(default_factory=list)


def resolve_benchmark_name(name: str) -> Optional[str]:
    """Map a user-supplied benchmark name to its canonical method name.

    Accepts full names (``textDocument/hover``), names without the
    ``textDocument/`` prefix (``hover``) and a few aliases.
    """
    name = name.strip()
    if name in ALL_BENCHMARKS:
        return name
    if name in _ALIASES:
        return _ALIASES[name]
    for prefix in ("textDocument/", "workspace/"):
        if prefix + name in ALL_BENCHMARKS:
            return prefix + name
    return None


def _position(line: int, col: int) -> JsonObj:
    return {"line": line, "character": col}


def _position_params(uri: str, line: int, col: int, trigger: Optional[str]) -> JsonObj:
    return {"textDocument": {"uri": uri}, "position": _position(line, col)}


def _document_params(uri: str, line: int, col: int, trigger: Optional[str]) -> JsonObj:
    return {"textDocument": {"uri": uri}}


def _references_params(uri: str, line: int, col: int, trigger: Optional[str]) -> JsonObj:
    params = _position_params(uri, line, col, trigger)
    params["context"] = {"includeDeclaration": True}
    return params


def _rename_params(uri: str, line: int, col: int, trigger: Optional[str]) -> JsonObj:
    params = _position_params(uri, line, col, trigger)
    params["newName"] = RENAME_TARGET
    return params


def _completion_params(uri: str, line: int, col: int, trigger: Optional[str]) -> JsonObj:
    params = _position_params(uri, line, col, trigger)
    if trigger:
        # triggerKind 2 = TriggerCharacter
        params["context"] = {"triggerKind": 2, "triggerCharacter": trigger}
    return params


def _formatting_params(uri: str, line: int, col: int, trigger: Optional[str]) -> JsonObj:
    return {
        "textDocument": {"uri": uri},
        "options": {"tabSize": 4, "insertSpaces": True},
    }


def _selection_range_params(
    uri: str, line: int, col: int, trigger: Optional[str]
) -> JsonObj:
    return {"textDocument": {"uri": uri}, "positions": [_position(line, col)]}


def _inlay_hint_params(uri: str, line: int, col: int, trigger: Optional[str]) -> JsonObj:
    return {
        "textDocument": {"uri": uri},
        "range": {"start": _position(0, 0), "end": _position(9999, 0)},
    }


def _workspace_symbol_params(
    uri: str, line: int, col: int, trigger: Optional[str]
) -> JsonObj:
    return {"query": ""}


_ParamsBuilder = Callable[[str, int, int, Optional[str]], JsonObj]

_PARAM_BUILDERS: Dict[str, _ParamsBuilder] = {
    "textDocument/definition": _position_params,
    "textDocument/declaration": _position_params,
    "textDocument/typeDefinition": _position_params,
    "textDocument/implementation": _position_params,
    "textDocument/hover": _position_params,
    "textDocument/references": _references_params,
    "textDocument/completion": _completion_params,
    "textDocument/signatureHelp": _position_params,
    "textDocument/rename": _rename_params,
    "textDocument/prepareRename": _position_params,
    "textDocument/documentSymbol": _document_params,
    "textDocument/documentLink": _document_params,
    "textDocument/formatting": _formatting_params,
    "textDocument/foldingRange": _document_params,
    "textDocument/selectionRange": _selection_range_params,
    "textDocument/codeLens": _document_params,
    "textDocument/inlayHint": _inlay_hint_params,
    "textDocument/semanticTokens/full": _document_params,
    "textDocument/documentColor": _document_params,
    "workspace/symbol": _workspace_symbol_params,
}


ParamsFn = Callable[[str, str], JsonObj]


def build_params(
    method: str, uri: str, line: int, col: int, trigger: Optional[str] = None
) -> JsonObj:
    builder = _PARAM_BUILDERS.get(method, _position_params)
    return builder(uri, line, col, trigger)


def make_params_fn(
    methods: Mapping[str, MethodConfig],
    line: int,
    col: int,
) -> ParamsFn:
    """Build a ``(method, file_uri) -> params`` function.

    Positions come from ``methods[method]`` when set there, else from the
    global ``line``/``col``.
    """

    def position_for(method: str) -> Tuple[int, int]:
        override = methods.get(method)
        if override is None:
            return line, col
        return (
            override.line if override.line is not None else line,
            override.col if override.col is not None else col,
        )

    def params_fn(method: str, file_uri: str) -> JsonObj:
        method_line, method_col = position_for(method)
        override = methods.get(method)
        trigger = override.trigger if override is not None else None
        return build_params(method, file_uri, method_line, method_col, trigger)

    return params_fn
