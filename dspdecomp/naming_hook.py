"""Interception of the engine's local variable naming.

The decompilation engine names locals itself.  It offers two callbacks around
that step which :class:`RecordNamesHook` implements:

``pre_generate_name(variable)``
    Called before the engine proposes a name.  Returning a string makes the
    engine use it; returning ``None`` lets the engine generate its own.

``post_generate_name(variable, proposed_name)``
    Called with the name the engine settled on.  The hook records it and hands
    it back unchanged.

The hook is created for a single run.  It is seeded with the names persisted
by earlier runs, consulted concurrently while the engine works through the
module, and finalised once decompilation is over so the recorded names can be
written back to disk.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum, auto
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from .identity import MethodIdentity
from .metadata import MethodHandle
from .name_store import LocalNameMap, LocalVariableKey, index_by_method

logger = logging.getLogger(__name__)


class HookState(Enum):
    IDLE = auto()
    SEEDING = auto()
    ACTIVE = auto()
    FINALIZED = auto()


@dataclass(frozen=True)
class LocalVariable:
    """The parts of an engine variable the hook looks at.

    Engines may pass their own objects as long as they expose the same
    attributes.
    """

    method: Optional[MethodHandle]
    index_in_function: int
    index: int
    name: str = ""


class RecordNamesHook:
    """Apply persisted local names and record the names the engine picks."""

    def __init__(self, identities: Mapping[MethodHandle, MethodIdentity]) -> None:
        self._identities: Dict[MethodHandle, MethodIdentity] = dict(identities)
        self._handles: Dict[MethodIdentity, MethodHandle] = {
            identity: handle for handle, identity in self._identities.items()
        }
        self._overrides: Dict[MethodHandle, Dict[str, str]] = {}
        self._slot_names: Dict[MethodHandle, Dict[int, Set[str]]] = {}
        self._recorded: Dict[MethodHandle, Dict[str, str]] = {}
        self._lock = threading.Lock()
        self._state = HookState.IDLE
        self.stale_methods = 0
        self.applied_overrides = 0
        self.conflicts = 0

    @property
    def state(self) -> HookState:
        return self._state

    @property
    def overrides(self) -> Mapping[MethodHandle, Mapping[str, str]]:
        return MappingProxyType(self._overrides)

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def seed(self, records: Iterable[LocalNameMap]) -> int:
        """Load persisted names; returns the number of methods that matched."""

        if self._state not in (HookState.IDLE, HookState.SEEDING):
            raise RuntimeError(f"cannot seed a hook in state {self._state.name}")
        self._state = HookState.SEEDING

        matched = 0
        stale = 0
        for identity, locals_ in index_by_method(records).items():
            handle = self._handles.get(identity)
            if handle is None:
                stale += 1
                continue
            if not locals_:
                continue
            merged = self._overrides.setdefault(handle, {})
            merged.update(locals_)
            self._slot_names[handle] = _index_by_slot(merged)
            matched += 1

        if stale:
            logger.info("%d persisted name maps match no method of this module", stale)
        self.stale_methods += stale
        return matched

    def finalize(self) -> Dict[MethodHandle, Dict[str, str]]:
        """Stop accepting callbacks and return a copy of the recorded names."""

        with self._lock:
            self._state = HookState.FINALIZED
            return {handle: dict(locals_) for handle, locals_ in self._recorded.items()}

    def _activate(self) -> None:
        if self._state is HookState.ACTIVE:
            return
        with self._lock:
            if self._state is HookState.FINALIZED:
                raise RuntimeError("naming hook used after the run was finalised")
            self._state = HookState.ACTIVE

    # ------------------------------------------------------------------
    # explicit API
    # ------------------------------------------------------------------
    def propose_override(self, method: MethodHandle, variable: Any) -> Optional[str]:
        """Return the persisted name of ``variable`` in ``method``, if any."""

        self._activate()
        locals_ = self._overrides.get(method)
        if not locals_:
            return None
        name = locals_.get(LocalVariableKey.of(variable).token)
        if name is not None:
            with self._lock:
                self.applied_overrides += 1
        return name

    def record_final(self, method: MethodHandle, variable: Any, proposed_name: str) -> str:
        """Record the name the engine settled on and return it unchanged."""

        self._activate()
        token = LocalVariableKey.of(variable).token
        with self._lock:
            if self._state is HookState.FINALIZED:
                raise RuntimeError("naming hook used after the run was finalised")
            locals_ = self._recorded.setdefault(method, {})
            previous = locals_.get(token)
            if previous is not None and previous != proposed_name:
                self.conflicts += 1
                logger.warning(
                    "local %s of %s was already named %r this run, now %r",
                    token,
                    self.describe(method),
                    previous,
                    proposed_name,
                )
            locals_[token] = proposed_name
        return proposed_name

    # ------------------------------------------------------------------
    # engine callbacks
    # ------------------------------------------------------------------
    def pre_generate_name(self, variable: Any) -> Optional[str]:
        method = getattr(variable, "method", None)
        if method is None:
            return None
        return self.propose_override(method, variable)

    def post_generate_name(self, variable: Any, proposed_name: str) -> str:
        method = getattr(variable, "method", None)
        if method is None:
            logger.warning(
                "variable %r has no owning method; its name %r is not recorded",
                variable,
                proposed_name,
            )
            return proposed_name
        return self.record_final(method, variable, proposed_name)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    def override_for_slot(self, method: MethodHandle, slot: int) -> Optional[str]:
        """Return the persisted name for a storage slot.

        Debug information only knows slot indices.  The name is returned when
        exactly one persisted key of ``method`` uses ``slot``, or when every
        key using it agrees on the name.
        """

        names = self._slot_names.get(method, {}).get(slot, set())
        if len(names) != 1:
            if names:
                logger.debug(
                    "slot %d of %s has several persisted names %s", slot, self.describe(method), sorted(names)
                )
            return None
        return next(iter(names))

    def recorded_locals(self, method: MethodHandle) -> Dict[str, str]:
        with self._lock:
            return dict(self._recorded.get(method, {}))

    def local_name_maps_for(self, methods: Iterable[MethodHandle]) -> List[LocalNameMap]:
        """Return the records to persist for ``methods``, skipping empty ones."""

        maps: List[LocalNameMap] = []
        for method in methods:
            locals_ = self.recorded_locals(method)
            if not locals_:
                continue
            ordered = dict(sorted(locals_.items(), key=lambda item: LocalVariableKey.parse(item[0])))
            maps.append(LocalNameMap(method=self._identities[method], locals=ordered))
        return maps

    def describe(self, method: MethodHandle) -> str:
        identity = self._identities.get(method)
        return str(identity) if identity is not None else f"method 0x{method:08X}"


def _index_by_slot(locals_: Mapping[str, str]) -> Dict[int, Set[str]]:
    slots: Dict[int, Set[str]] = {}
    for token, name in locals_.items():
        slots.setdefault(LocalVariableKey.parse(token).slot_index, set()).add(name)
    return slots


__all__ = ["HookState", "LocalVariable", "RecordNamesHook"]
