"""Spawning and tearing down language-server subprocesses."""

from __future__ import annotations

import dataclasses
import os
import signal
import subprocess
import sys
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Optional, Tuple

from lsp_bench.errors import SpawnError


@dataclasses.dataclass(frozen=True)
class ServerSpec:
    label: str
    cmd: str
    args: Tuple[str, ...] = ()
    description: str = ""
    link: str = ""

    @property
    def argv(self) -> List[str]:
        return [resolve_executable(self.cmd), *self.args]


def resolve_executable(cmd: str) -> str:
    """Make a relative executable path absolute.

    The server runs with the project as its working directory, where a path
    like ``./target/release/server`` would no longer point at the binary.
    Bare command names are left for PATH lookup.
    """
    has_sep = os.sep in cmd or (os.altsep is not None and os.altsep in cmd)
    if has_sep and not os.path.isabs(cmd):
        return str(Path(cmd).resolve())
    return cmd


def sample_rss_kb(pid: int) -> Optional[int]:
    """Resident set size of ``pid`` in kilobytes, via ``ps``.

    Returns None when ``ps`` is unavailable or the process is gone.
    """
    try:
        result = subprocess.run(
            ["ps", "-o", "rss=", "-p", str(pid)],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (subprocess.TimeoutExpired, OSError):
        return None
    if result.returncode != 0:
        return None
    try:
        return int(result.stdout.strip())
    except ValueError:
        return None


class ServerProcess:
    """One running server with piped stdin/stdout.

    stderr is discarded. ``terminate`` kills and reaps the process; it is safe
    to call any number of times.
    """

    def __init__(self, spec: ServerSpec, proc: "subprocess.Popen[bytes]") -> None:
        self.spec = spec
        self._proc = proc
        self._terminated = False

    @classmethod
    def spawn(cls, spec: ServerSpec, cwd: Path) -> "ServerProcess":
        argv = spec.argv
        kwargs: Dict[str, Any] = {
            "cwd": str(cwd),
            "stdin": subprocess.PIPE,
            "stdout": subprocess.PIPE,
            "stderr": subprocess.DEVNULL,
        }
        # Own process group so wrapper scripts and their children die together.
        if sys.platform != "win32":
            kwargs["start_new_session"] = True
        try:
            proc = subprocess.Popen(argv, **kwargs)
        except OSError as e:
            raise SpawnError(f"{spec.cmd}: {e.strerror or e}") from e
        return cls(spec, proc)

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def stdin(self) -> BinaryIO:
        assert self._proc.stdin is not None
        return self._proc.stdin

    @property
    def stdout(self) -> BinaryIO:
        assert self._proc.stdout is not None
        return self._proc.stdout

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.poll()

    def is_alive(self) -> bool:
        return not self._terminated and self._proc.poll() is None

    def rss_kb(self) -> Optional[int]:
        """Resident set size of the live server, or None once it has exited."""
        if not self.is_alive():
            return None
        return sample_rss_kb(self.pid)

    def terminate(self) -> None:
        if self._terminated:
            return
        self._terminated = True

        if self._proc.poll() is None:
            if sys.platform != "win32":
                try:
                    os.killpg(self._proc.pid, signal.SIGKILL)
                except OSError:
                    self._proc.kill()
            else:
                self._proc.kill()

        try:
            self._proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            pass

        # stdout belongs to the reader thread, which closes it on EOF.
        if self._proc.stdin is not None:
            try:
                self._proc.stdin.close()
            except OSError:
                pass

    def __enter__(self) -> "ServerProcess":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.terminate()
