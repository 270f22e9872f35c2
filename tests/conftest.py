"""Shared fixtures: a throwaway project and specs for the fake server."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import sys

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from lsp_bench.transport import ServerSpec


FAKE_SERVER = Path(__file__).parent / "fake_lsp_server.py"

POOL_SOL = """\
// SPDX-License-Identifier: MIT
pragma solidity ^0.8.0;

library Pool {
    struct State {
        uint160 sqrtPriceX96;
    }

    function swap(State storage self) internal {
        self.sqrtPriceX96 = 1;
    }
}
"""


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A project directory holding ``src/Pool.sol``."""
    src = tmp_path / "src"
    src.mkdir()
    (src / "Pool.sol").write_text(POOL_SOL, encoding="utf-8")
    return tmp_path


@pytest.fixture
def fake_spec() -> Callable[..., ServerSpec]:
    """Factory for specs that launch the fake server with the given flags."""

    def make(*flags: str, label: str = "fake") -> ServerSpec:
        return ServerSpec(
            label=label,
            cmd=sys.executable,
            args=(str(FAKE_SERVER), *flags),
        )

    return make
