"""Access control, audit logging, rate limiting and circuit breaking."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable

Clock = Callable[[], float]


class PrincipalKind(Enum):
    """The kinds of principal that rules can name."""

    USER = "User"
    SERVICE = "Service"
    ROLE = "Role"


@dataclass(frozen=True)
class Principal:
    """A user, service or role identified by name."""

    kind: PrincipalKind
    name: str

    @classmethod
    def user(cls, name: str) -> "Principal":
        """A user principal."""
        return cls(PrincipalKind.USER, name)

    @classmethod
    def service(cls, name: str) -> "Principal":
        """A service principal."""
        return cls(PrincipalKind.SERVICE, name)

    @classmethod
    def role(cls, name: str) -> "Principal":
        """A role principal."""
        return cls(PrincipalKind.ROLE, name)


@dataclass(frozen=True)
class Resource:
    """A named resource that rules protect."""

    name: str


class Action(Enum):
    """Operations a principal may perform on a resource."""

    READ = "Read"
    WRITE = "Write"
    ADMIN = "Admin"


@dataclass(frozen=True)
class AclRule:
    """Allows or denies one action of one principal on one resource."""

    principal: Principal
    resource: Resource
    action: Action
    allow: bool


class AclManager:
    """An ordered list of rules; the first matching rule decides."""

    def __init__(self, rules: Iterable[AclRule] = ()) -> None:
        self._rules: list[AclRule] = list(rules)

    @property
    def rules(self) -> list[AclRule]:
        """A copy of the current rules."""
        return list(self._rules)

    def replace_rules(self, rules: Iterable[AclRule]) -> None:
        """Swap in a new rule set."""
        self._rules = list(rules)

    def is_allowed(self, principal: Principal, resource: Resource, action: Action) -> bool:
        """Return the verdict of the first matching rule; deny if none matches."""
        for rule in self._rules:
            if (
                rule.principal == principal
                and rule.resource == resource
                and rule.action == action
            ):
                return rule.allow
        return False


@dataclass(frozen=True)
class AuditEvent:
    """One access decision; ``ts`` is seconds since the epoch."""

    principal: Principal
    resource: Resource
    action: Action
    allowed: bool
    ts: float = field(default_factory=time.time)


class Auditor:
    """Keeps the most recent audit events, dropping the oldest first."""

    def __init__(self, max_events: int) -> None:
        if max_events < 0:
            raise ValueError("max_events must not be negative")
        self.max_events = max_events
        self._events: deque[AuditEvent] = deque()

    def __len__(self) -> int:
        return len(self._events)

    def record(self, event: AuditEvent) -> None:
        """Append an event, evicting the oldest one when full."""
        if len(self._events) >= self.max_events and self._events:
            self._events.popleft()
        self._events.append(event)

    def recent(self, n: int) -> list[AuditEvent]:
        """Return up to ``n`` events, newest first."""
        return list(reversed(self._events))[:max(n, 0)]


@dataclass(frozen=True)
class RateLimitConfig:
    """Token bucket settings."""

    capacity: int
    refill_per_sec: int


class TokenBucket:
    """A token bucket that starts full and refills in whole tokens."""

    def __init__(self, capacity: int, refill_per_sec: int, clock: Clock = time.monotonic) -> None:
        self.capacity = capacity
        self.refill_per_sec = refill_per_sec
        self._clock = clock
        self._tokens = capacity
        self._last = clock()

    @property
    def tokens(self) -> int:
        """Tokens left as of the last call to :meth:`allow`."""
        return self._tokens

    def allow(self) -> bool:
        """Take one token if any is available."""
        now = self._clock()
        added = int((now - self._last) * self.refill_per_sec)
        if added > 0:
            self._tokens = min(self._tokens + added, self.capacity)
            self._last = now
        if self._tokens > 0:
            self._tokens -= 1
            return True
        return False


class CircuitState(Enum):
    """States of a circuit breaker."""

    CLOSED = "Closed"
    OPEN = "Open"
    HALF_OPEN = "HalfOpen"


@dataclass(frozen=True)
class CircuitConfig:
    """Failures needed to open the circuit, and how long it stays open."""

    error_threshold: int
    open_ms: int


class CircuitBreaker:
    """A circuit breaker with a half-open probing state."""

    def __init__(self, cfg: CircuitConfig, clock: Clock = time.monotonic) -> None:
        self.cfg = cfg
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._errors = 0
        self._opened_at: float | None = None

    def _open_elapsed(self) -> bool:
        return (
            self._opened_at is not None
            and self._clock() - self._opened_at >= self.cfg.open_ms / 1000.0
        )

    def _trip(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()

    def on_result(self, ok: bool) -> None:
        """Feed the outcome of a call into the breaker."""
        if self._state is CircuitState.CLOSED:
            if ok:
                self._errors = 0
            else:
                self._errors += 1
                if self._errors >= self.cfg.error_threshold:
                    self._trip()
        elif self._state is CircuitState.OPEN:
            if self._open_elapsed():
                self._state = CircuitState.HALF_OPEN
                self._errors = 0
        elif ok:
            self._state = CircuitState.CLOSED
            self._errors = 0
        else:
            self._trip()

    def allow_request(self) -> bool:
        """Return True if a call may go through; moves an expired open state to half-open."""
        if self._state is CircuitState.OPEN:
            if self._open_elapsed():
                self._state = CircuitState.HALF_OPEN
                return True
            return False
        return True

    def state(self) -> CircuitState:
        """The current state."""
        return self._state


@dataclass
class Governance:
    """Access control, auditing, rate limiters and breakers in one place."""

    acl: AclManager = field(default_factory=AclManager)
    auditor: Auditor = field(default_factory=lambda: Auditor(1024))
    limiters: dict[str, TokenBucket] = field(default_factory=dict)
    breakers: dict[str, CircuitBreaker] = field(default_factory=dict)