"""
Execution guard shared by every stakeflow contract.

The host runs one operation at a time and each external operation is
all-or-nothing.  Two hazards remain inside a single process:

  1. **Nested entry**: a collaborator we hand control to (a token
     transfer hook, a vesting sink) calls back into the same contract
     while it is half-way through an operation.
  2. **Partial failure**: an operation mutates its own tables, then a
     collaborator rejects a call.

``@external`` handles both: it refuses nested entry with
``ReentrancyError`` and runs the operation inside :func:`atomic`, which
undoes every journaled write when the operation raises.

Undo log
────────
State that must roll back is written through :func:`assign`,
:func:`store`, :func:`remove` and :func:`include`.  Inside an
:func:`atomic` block each helper records the old value the first time a
given attribute, mapping key or set member is touched; outside one they
are plain writes.  A rollback replays the log backwards, so its cost is
the number of writes the operation made, never the size of the tables.

Nested blocks (a pool vesting into a vault, an asset hook calling a
second contract) share the outer log.  Each block owns a segment, so an
inner failure that is caught undoes only the inner writes, and an
inner success leaves its entries for the outer block to undo.
"""

from __future__ import annotations

import contextlib
import contextvars
import functools
import logging
from typing import Any, Callable, Iterator, MutableMapping, Optional, TypeVar

from stakeflow_core.clock import SystemClock
from stakeflow_core.errors import InvariantViolation, ReentrancyError

log = logging.getLogger("stakeflow.contract")

F = TypeVar("F", bound=Callable[..., Any])

_MISSING = object()


class UndoLog:
    """Old values of everything written since the outermost block began."""

    def __init__(self) -> None:
        self.entries: list[tuple[str, Any, Any, Any]] = []
        self._seen: list[set[tuple[str, int, Any]]] = []

    def __len__(self) -> int:
        return len(self.entries)

    def begin(self) -> int:
        self._seen.append(set())
        return len(self.entries)

    def commit(self) -> None:
        done = self._seen.pop()
        if self._seen:
            self._seen[-1] |= done

    def rollback(self, mark: int) -> None:
        while len(self.entries) > mark:
            kind, target, key, old = self.entries.pop()
            if kind == "attr":
                setattr(target, key, old)
            elif kind == "item":
                if old is _MISSING:
                    target.pop(key, None)
                else:
                    target[key] = old
            elif old:
                target.add(key)
            else:
                target.discard(key)
        self._seen.pop()

    def _first(self, kind: str, target: Any, key: Any) -> bool:
        tag = (kind, id(target), key)
        seen = self._seen[-1]
        if tag in seen:
            return False
        seen.add(tag)
        return True

    def record(self, kind: str, target: Any, key: Any) -> None:
        if not self._first(kind, target, key):
            return
        if kind == "attr":
            old = getattr(target, key)
        elif kind == "item":
            old = target.get(key, _MISSING)
        else:
            old = key in target
        self.entries.append((kind, target, key, old))


_active: contextvars.ContextVar[Optional[UndoLog]] = contextvars.ContextVar(
    "stakeflow_undo_log", default=None)


def current_log() -> Optional[UndoLog]:
    return _active.get()


def _record(kind: str, target: Any, key: Any) -> None:
    undo = _active.get()
    if undo is not None:
        undo.record(kind, target, key)


def assign(obj: Any, name: str, value: Any) -> None:
    """``setattr`` that rolls back with the enclosing block."""
    _record("attr", obj, name)
    setattr(obj, name, value)


def store(mapping: MutableMapping, key: Any, value: Any) -> None:
    _record("item", mapping, key)
    mapping[key] = value


def remove(mapping: MutableMapping, key: Any, default: Any = None) -> Any:
    if key not in mapping:
        return default
    _record("item", mapping, key)
    return mapping.pop(key)


def include(members: set, item: Any) -> None:
    if item not in members:
        _record("member", members, item)
        members.add(item)


@contextlib.contextmanager
def atomic() -> Iterator[UndoLog]:
    """Undo every journaled write made in the block if it raises."""
    undo = _active.get()
    token = None
    if undo is None:
        undo = UndoLog()
        token = _active.set(undo)
    mark = undo.begin()
    try:
        yield undo
    except BaseException:
        undone = len(undo) - mark
        undo.rollback(mark)
        log.debug("rolled back %d writes", undone)
        raise
    else:
        undo.commit()
    finally:
        if token is not None:
            _active.reset(token)


class Contract:
    """
    Base class for contracts composed from the accounting components.

    Subclasses call ``super().__init__`` and mark their entry points
    with :func:`external`.
    """

    def __init__(
        self,
        address: str,
        clock: Optional[Callable[[], int]] = None,
        check_invariants: bool = False,
    ) -> None:
        self.address = address
        self.clock = clock if clock is not None else SystemClock()
        self.check_invariants = check_invariants
        self._entered: Optional[str] = None

    def now(self) -> int:
        return self.clock()

    def invariant_checker(self):
        from stakeflow_core.invariants import InvariantChecker

        return InvariantChecker()

    def verify_invariants(self) -> tuple[bool, str]:
        return self.invariant_checker().verify(self)

    @property
    def busy(self) -> bool:
        return self._entered is not None


def external(method: F) -> F:
    """Make *method* a non-reentrant, all-or-nothing contract operation."""

    @functools.wraps(method)
    def wrapper(self: Contract, *args: Any, **kwargs: Any) -> Any:
        if self._entered is not None:
            raise ReentrancyError(
                "REENTRANT_CALL",
                f"{method.__name__} called while {self._entered} is running on {self.address}",
            )
        checker = self.invariant_checker() if self.check_invariants else None
        if checker is not None:
            checker.capture(self)
        self._entered = method.__name__
        try:
            with atomic():
                result = method(self, *args, **kwargs)
                if checker is not None:
                    ok, msg = checker.verify(self)
                    if not ok:
                        raise InvariantViolation("INVARIANT", msg)
            return result
        except Exception as exc:
            log.debug("%s.%s failed: %s", self.address, method.__name__, exc)
            raise
        finally:
            self._entered = None

    return wrapper  # type: ignore[return-value]
