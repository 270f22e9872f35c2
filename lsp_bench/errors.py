"""Exception types raised by the transport, codec and session layers.

The benchmark runner turns every one of these into a per-server ``fail``
row; none of them escape a benchmark sweep.
"""

from __future__ import annotations


class LspBenchError(RuntimeError):
    pass


class SpawnError(LspBenchError):
    """The server executable is missing or could not be launched."""


class LspIoError(LspBenchError):
    """Writing to the server's stdin failed; the process is presumed dead."""


class LspTimeoutError(LspBenchError, TimeoutError):
    def __init__(self, message: str = "timeout") -> None:
        super().__init__(message)


class LspEofError(LspBenchError):
    def __init__(self, message: str = "EOF") -> None:
        super().__init__(message)


class LspProtocolError(LspBenchError):
    pass


class TruncatedFrameError(LspProtocolError):
    """The stream ended before a frame body was fully read."""


class ConfigError(ValueError):
    pass
