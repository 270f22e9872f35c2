"""Synchronous LSP client session over a spawned server's stdio.

A background thread decodes frames from the server's stdout and hands them
to the session through a bounded queue. Every foreground wait (responses,
diagnostics) pulls from that queue with an explicit deadline, so a slow or
silent server turns into an ``LspTimeoutError`` rather than a hang.
"""

from __future__ import annotations

import dataclasses
import os
import queue
import sys
import threading
import time
from pathlib import Path
from typing import Any, List, Optional

from lsp_bench.errors import (
    LspBenchError,
    LspEofError,
    LspIoError,
    LspProtocolError,
    LspTimeoutError,
)
from lsp_bench.protocol import JsonObj, encode_message, iter_messages
from lsp_bench.transport import ServerProcess, ServerSpec


HANDSHAKE_TIMEOUT_S = 10.0
DEFAULT_LANGUAGE_ID = "solidity"
PUBLISH_DIAGNOSTICS = "textDocument/publishDiagnostics"
LOG_MESSAGE = "window/logMessage"

_RX_QUEUE_SIZE = 1024
_EOF = object()

# Requested capabilities stay fixed across servers so that "unsupported"
# answers are comparable.
CLIENT_CAPABILITIES: JsonObj = {
    "textDocument": {
        "publishDiagnostics": {},
        "definition": {"dynamicRegistration": False, "linkSupport": True},
        "declaration": {"dynamicRegistration": False, "linkSupport": True},
        "hover": {
            "dynamicRegistration": False,
            "contentFormat": ["plaintext", "markdown"],
        },
        "completion": {
            "dynamicRegistration": False,
            "completionItem": {"snippetSupport": False},
        },
        "documentSymbol": {"dynamicRegistration": False},
        "documentLink": {"dynamicRegistration": False},
        "references": {"dynamicRegistration": False},
        "rename": {"dynamicRegistration": False},
        "signatureHelp": {"dynamicRegistration": False},
        "codeAction": {"dynamicRegistration": False},
    },
    "workspace": {
        "symbol": {"dynamicRegistration": False},
    },
}


@dataclasses.dataclass
class DiagnosticsInfo:
    count: int
    elapsed_ms: float
    message: JsonObj


def path_to_uri(path: Path) -> str:
    return path.resolve().as_uri()


class LspClient:
    def __init__(
        self,
        process: ServerProcess,
        *,
        trace: bool = False,
        queue_size: int = _RX_QUEUE_SIZE,
    ) -> None:
        self.process = process
        self.name = process.spec.label
        self.trace = trace
        # window/logMessage text, kept for postmortems on failure
        self.log_lines: List[str] = []

        self._next_id = 1
        self._rx_queue: "queue.Queue[Any]" = queue.Queue(maxsize=queue_size)
        self._closed = threading.Event()
        self._eof = False
        self._rx_thread = threading.Thread(
            target=self._rx_loop, name=f"{self.name}-lsp-rx", daemon=True
        )
        self._rx_thread.start()

    @classmethod
    def spawn(cls, spec: ServerSpec, cwd: Path, *, trace: bool = False) -> "LspClient":
        return cls(ServerProcess.spawn(spec, cwd), trace=trace)

    def __enter__(self) -> "LspClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Stop consuming and kill the server. Idempotent."""
        self._closed.set()
        self.process.terminate()
        if self._rx_thread is not threading.current_thread():
            self._rx_thread.join(timeout=1)

    def rss_kb(self) -> Optional[int]:
        return self.process.rss_kb()

    # -- reader pipeline -------------------------------------------------

    def _rx_loop(self) -> None:
        stream = self.process.stdout
        try:
            for msg in iter_messages(stream):
                if not isinstance(msg, dict):
                    continue
                if self.trace:
                    if "method" in msg:
                        sys.stderr.write(f"[{self.name} <-] {msg['method']}\n")
                    else:
                        sys.stderr.write(f"[{self.name} <-] response id={msg.get('id')}\n")
                if not self._hand_off(msg):
                    return
        except (OSError, ValueError):
            # stream torn down underneath us; the consumer sees EOF
            pass
        finally:
            self._hand_off(_EOF)
            try:
                stream.close()
            except OSError:
                pass

    def _hand_off(self, item: Any) -> bool:
        while not self._closed.is_set():
            try:
                self._rx_queue.put(item, timeout=0.1)
                return True
            except queue.Full:
                continue
        return False

    def _recv(self, timeout: float) -> JsonObj:
        if self._eof:
            raise LspEofError()
        try:
            item = self._rx_queue.get(timeout=timeout)
        except queue.Empty:
            raise LspTimeoutError() from None
        if item is _EOF:
            self._eof = True
            raise LspEofError()
        return item

    def _handle_notification(self, msg: JsonObj) -> None:
        if msg.get("method") == LOG_MESSAGE:
            params = msg.get("params")
            if isinstance(params, dict) and params.get("message") is not None:
                self.log_lines.append(str(params["message"]))

    # -- writing -----------------------------------------------------------

    def _write(self, msg: JsonObj) -> None:
        if self.trace:
            sys.stderr.write(f"[{self.name} ->] {msg.get('method', 'response')}\n")
        try:
            stream = self.process.stdin
            stream.write(encode_message(msg))
            stream.flush()
        except (OSError, ValueError) as e:
            raise LspIoError(f"{self.name}: {e}") from e

    def send(self, method: str, params: Any) -> int:
        req_id = self._next_id
        self._next_id += 1
        self._write({"jsonrpc": "2.0", "id": req_id, "method": method, "params": params})
        return req_id

    def notify(self, method: str, params: Any) -> None:
        self._write({"jsonrpc": "2.0", "method": method, "params": params})

    # -- waiting -----------------------------------------------------------

    def read_response(self, req_id: int, timeout: float) -> JsonObj:
        """Wait for the response carrying ``req_id``.

        Notifications arriving first are consumed in order; log messages go
        to ``log_lines``. The deadline is fixed on entry, so a stream of
        notifications cannot stretch the wait.

        Raises:
            LspTimeoutError: no matching response before the deadline.
            LspEofError: the server's output ended.
        """
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LspTimeoutError()
            msg = self._recv(remaining)
            if msg.get("id") == req_id and "method" not in msg:
                return msg
            self._handle_notification(msg)

    def request(self, method: str, params: Any, *, timeout: float) -> JsonObj:
        return self.read_response(self.send(method, params), timeout)

    def initialize(self, root_uri: str) -> JsonObj:
        params = {
            "processId": os.getpid(),
            "rootUri": root_uri,
            "capabilities": CLIENT_CAPABILITIES,
        }
        resp = self.request("initialize", params, timeout=HANDSHAKE_TIMEOUT_S)
        if "error" in resp:
            err = resp["error"]
            detail = err.get("message", err) if isinstance(err, dict) else err
            raise LspProtocolError(f"initialize: {detail}")
        self.notify("initialized", {})
        return resp

    def open_file(self, path: Path, *, language_id: str = DEFAULT_LANGUAGE_ID) -> str:
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise LspBenchError(f"{path}: {e.strerror or e}") from e
        uri = path_to_uri(path)
        self.notify(
            "textDocument/didOpen",
            {
                "textDocument": {
                    "uri": uri,
                    "languageId": language_id,
                    "version": 1,
                    "text": text,
                }
            },
        )
        return uri

    def did_change(self, uri: str, version: int, text: str) -> None:
        """Replace the whole document with ``text`` (full sync)."""
        self.notify(
            "textDocument/didChange",
            {
                "textDocument": {"uri": uri, "version": version},
                "contentChanges": [{"text": text}],
            },
        )

    def wait_for_valid_diagnostics(self, timeout: float) -> DiagnosticsInfo:
        """Wait until a publishDiagnostics notification lists at least one item.

        Every publishDiagnostics seen overwrites the "last seen" info, empty or
        not. If the deadline passes after at least one notification arrived,
        that last info is returned (a file may simply have no problems).

        Raises:
            LspTimeoutError: no publishDiagnostics at all before the deadline.
            LspEofError: the server's output ended.
        """
        start = time.monotonic()
        deadline = start + timeout
        last: Optional[DiagnosticsInfo] = None
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                if last is not None:
                    return last
                raise LspTimeoutError()
            try:
                msg = self._recv(remaining)
            except LspTimeoutError:
                continue

            if msg.get("method") != PUBLISH_DIAGNOSTICS:
                self._handle_notification(msg)
                continue

            params = msg.get("params")
            diagnostics = params.get("diagnostics") if isinstance(params, dict) else None
            count = len(diagnostics) if isinstance(diagnostics, list) else 0
            last = DiagnosticsInfo(
                count=count,
                elapsed_ms=(time.monotonic() - start) * 1000.0,
                message=msg,
            )
            if count > 0:
                return last
