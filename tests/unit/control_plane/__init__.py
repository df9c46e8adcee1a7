"""In-memory store and recording logger shared by control-plane tests."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from auditlog_filters.domain.models import FilterRecord, UserAssignment, parse_user_spec

Outcome = str | BaseException


@dataclass(slots=True)
class RecordingLogger:
    events: list[tuple[str, str, dict[str, object]]] = field(default_factory=list)

    def info(self, event: str, **kwargs: object) -> None:
        self.events.append(("info", event, dict(kwargs)))

    def warning(self, event: str, **kwargs: object) -> None:
        self.events.append(("warning", event, dict(kwargs)))

    def error(self, event: str, **kwargs: object) -> None:
        self.events.append(("error", event, dict(kwargs)))

    def names(self, level: str | None = None) -> list[str]:
        return [name for lvl, name, _ in self.events if level is None or lvl == level]

    def transitions(self) -> list[tuple[object, object]]:
        return [
            (payload["from_state"], payload["to_state"])
            for _, name, payload in self.events
            if name == "filter_update_transition"
        ]


@dataclass(slots=True)
class _Rule:
    method: str
    outcome: Outcome
    when: Callable[..., bool] | None
    remaining: int


@dataclass(slots=True)
class FakeFilterStore:
    """Behaves like the server-side functions; failures are programmed per call."""

    filters: dict[str, tuple[int, str]] = field(default_factory=dict)
    assignments: dict[tuple[str, str], str] = field(default_factory=dict)
    calls: list[tuple[str, tuple[object, ...]]] = field(default_factory=list)
    next_id: int = 1
    _rules: list[_Rule] = field(default_factory=list)

    def seed_filter(self, name: str, text: str) -> int:
        filter_id = self.next_id
        self.next_id += 1
        self.filters[name] = (filter_id, text)
        return filter_id

    def seed_assignment(self, username: str, userhost: str, filter_name: str) -> None:
        self.assignments[(username, userhost)] = filter_name

    def fail(
        self,
        method: str,
        outcome: Outcome,
        *,
        when: Callable[..., bool] | None = None,
        times: int = 1,
    ) -> None:
        """Make the next ``times`` matching calls to ``method`` return or raise ``outcome``.

        ``times=-1`` applies the rule to every matching call.
        """

        self._rules.append(_Rule(method=method, outcome=outcome, when=when, remaining=times))

    def called(self, method: str) -> list[tuple[object, ...]]:
        return [args for name, args in self.calls if name == method]

    def create_filter(self, name: str, definition: str) -> str:
        programmed = self._intercept("create_filter", name, definition)
        if programmed is not None:
            return programmed
        if name in self.filters:
            return "ERROR: Filter name already in use"
        self.seed_filter(name, definition)
        return "OK"

    def remove_filter(self, name: str) -> str:
        programmed = self._intercept("remove_filter", name)
        if programmed is not None:
            return programmed
        if name not in self.filters:
            return "ERROR: Filter name does not exist"
        del self.filters[name]
        for key in [key for key, bound in self.assignments.items() if bound == name]:
            del self.assignments[key]
        return "OK"

    def get_filter(self, name: str) -> FilterRecord | None:
        self._intercept("get_filter", name)
        if name not in self.filters:
            return None
        filter_id, text = self.filters[name]
        return FilterRecord(name=name, filter_id=filter_id, stored_text=text)

    def filter_exists(self, name: str) -> bool:
        self._intercept("filter_exists", name)
        return name in self.filters

    def list_assignments(self, filter_name: str) -> list[UserAssignment]:
        self._intercept("list_assignments", filter_name)
        return [
            UserAssignment(username=username, userhost=userhost, filter_name=bound)
            for (username, userhost), bound in sorted(self.assignments.items())
            if bound == filter_name
        ]

    def set_assignment(self, user_spec: str, filter_name: str) -> str:
        programmed = self._intercept("set_assignment", user_spec, filter_name)
        if programmed is not None:
            return programmed
        if filter_name not in self.filters:
            return "ERROR: Unknown filter name"
        self.assignments[parse_user_spec(user_spec)] = filter_name
        return "OK"

    def remove_assignment(self, user_spec: str) -> str:
        programmed = self._intercept("remove_assignment", user_spec)
        if programmed is not None:
            return programmed
        key = parse_user_spec(user_spec)
        if key not in self.assignments:
            return "ERROR: User does not exist"
        del self.assignments[key]
        return "OK"

    def get_assignment(self, username: str, userhost: str) -> str | None:
        self._intercept("get_assignment", username, userhost)
        return self.assignments.get((username, userhost))

    def _intercept(self, method: str, *args: object) -> str | None:
        self.calls.append((method, args))
        for rule in self._rules:
            if rule.method != method or rule.remaining == 0:
                continue
            if rule.when is not None and not rule.when(*args):
                continue
            if rule.remaining > 0:
                rule.remaining -= 1
            if isinstance(rule.outcome, BaseException):
                raise rule.outcome
            return rule.outcome
        return None
