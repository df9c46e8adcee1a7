"""Scripted DB-API connection doubles for store adapter tests."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any

Response = Any


@dataclass(slots=True)
class ScriptedConnection:
    """Answers each ``execute`` with the next scripted response.

    A response is the row (``fetchone``) or row list (``fetchall``) to return,
    or an exception instance to raise from ``execute``.
    """

    responses: deque[Response] = field(default_factory=deque)
    executed: list[tuple[str, tuple[object, ...]]] = field(default_factory=list)
    ping_error: BaseException | None = None
    pings: int = 0
    closed: bool = False

    @classmethod
    def answering(cls, *responses: Response) -> ScriptedConnection:
        return cls(responses=deque(responses))

    def cursor(self) -> _ScriptedCursor:
        return _ScriptedCursor(self)

    def ping(self, reconnect: bool = True) -> None:
        self.pings += 1
        if self.ping_error is not None:
            raise self.ping_error

    def close(self) -> None:
        self.closed = True


@dataclass(slots=True)
class _ScriptedCursor:
    connection: ScriptedConnection
    _current: Response = None

    def __enter__(self) -> _ScriptedCursor:
        return self

    def __exit__(self, *exc: object) -> None:
        return None

    def execute(self, query: str, args: tuple[object, ...] = ()) -> int:
        self.connection.executed.append((query, tuple(args)))
        response = self.connection.responses.popleft()
        if isinstance(response, BaseException):
            raise response
        self._current = response
        return 1

    def fetchone(self) -> Response:
        return self._current

    def fetchall(self) -> Response:
        return self._current


@dataclass(slots=True)
class ConnectionFactory:
    """Hands out scripted connections in order and counts how many were opened."""

    connections: list[ScriptedConnection]
    opened: int = 0

    def __call__(self) -> ScriptedConnection:
        connection = self.connections[self.opened]
        self.opened += 1
        return connection


@dataclass(slots=True)
class FakeClock:
    now: float = 0.0

    def __call__(self) -> float:
        return self.now
