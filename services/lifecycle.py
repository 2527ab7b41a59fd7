# services/lifecycle.py

from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from exceptions import IllegalTransition


class IngestPhase(Enum):
    IDLE = "IDLE"
    FETCHING = "FETCHING"
    DEDUPING = "DEDUPING"
    WRITING = "WRITING"
    RECORDING = "RECORDING"


class ReconcilePhase(Enum):
    IDLE = "IDLE"
    SCANNING = "SCANNING"
    LOOKUP = "LOOKUP"
    COMPARE = "COMPARE"
    REPORT = "REPORT"
    PERSIST = "PERSIST"


# Every phase may fall back to IDLE (cycle finished, aborted or cancelled).
INGEST_TRANSITIONS: Dict[IngestPhase, FrozenSet[IngestPhase]] = {
    IngestPhase.IDLE: frozenset({IngestPhase.FETCHING}),
    IngestPhase.FETCHING: frozenset({IngestPhase.DEDUPING, IngestPhase.IDLE}),
    # DEDUPING -> DEDUPING: order already ingested, next order
    IngestPhase.DEDUPING: frozenset({IngestPhase.DEDUPING, IngestPhase.WRITING, IngestPhase.IDLE}),
    # WRITING -> DEDUPING: POS write failed, state is not recorded
    IngestPhase.WRITING: frozenset({IngestPhase.RECORDING, IngestPhase.DEDUPING, IngestPhase.IDLE}),
    IngestPhase.RECORDING: frozenset({IngestPhase.DEDUPING, IngestPhase.IDLE}),
}

RECONCILE_TRANSITIONS: Dict[ReconcilePhase, FrozenSet[ReconcilePhase]] = {
    ReconcilePhase.IDLE: frozenset({ReconcilePhase.SCANNING}),
    ReconcilePhase.SCANNING: frozenset({ReconcilePhase.LOOKUP, ReconcilePhase.IDLE}),
    ReconcilePhase.LOOKUP: frozenset({ReconcilePhase.COMPARE, ReconcilePhase.LOOKUP, ReconcilePhase.IDLE}),
    ReconcilePhase.COMPARE: frozenset({ReconcilePhase.REPORT, ReconcilePhase.LOOKUP, ReconcilePhase.IDLE}),
    ReconcilePhase.REPORT: frozenset({ReconcilePhase.PERSIST, ReconcilePhase.LOOKUP, ReconcilePhase.IDLE}),
    ReconcilePhase.PERSIST: frozenset({ReconcilePhase.LOOKUP, ReconcilePhase.IDLE}),
}


class CycleStateMachine:
    """
    Current phase of one worker plus the transitions it has taken.

    ``history`` holds (phase, order key) pairs for the running cycle only and
    is cleared each time the machine leaves IDLE.
    """

    def __init__(self, name: str, transitions: Dict[Enum, FrozenSet[Enum]], initial: Enum):
        self.name = name
        self.transitions = transitions
        self.initial = initial
        self.state = initial
        self.history: List[Tuple[Enum, Optional[str]]] = []

    def can(self, target: Enum) -> bool:
        return target in self.transitions.get(self.state, frozenset())

    def advance(self, target: Enum, key: Optional[str] = None) -> None:
        if not self.can(target):
            raise IllegalTransition(self.name, self.state, target)
        if self.state == self.initial:
            self.history = []
        self.state = target
        self.history.append((target, key))

    def reset(self) -> None:
        """Return to IDLE from wherever the cycle stopped."""
        if self.state != self.initial:
            self.advance(self.initial)

    def entered(self, phase: Enum, key: Optional[str] = None) -> int:
        return sum(1 for p, k in self.history if p == phase and (key is None or k == key))


def ingest_machine() -> CycleStateMachine:
    return CycleStateMachine("ingest", INGEST_TRANSITIONS, IngestPhase.IDLE)


def reconcile_machine() -> CycleStateMachine:
    return CycleStateMachine("reconcile", RECONCILE_TRANSITIONS, ReconcilePhase.IDLE)
