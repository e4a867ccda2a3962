"""Typed progress events and the per-package sync state machine.

Pipelines emit ``ProgressEvent``s on a ``ProgressChannel``. The channel
applies each event to the package's ``PackageSyncState`` (rejecting
illegal transitions) and then hands it to every subscriber, so renderers
never mutate state themselves.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from skilld.core import debug as log
from skilld.core.errors import InvalidTransition


class SyncStatus(str, Enum):
    """Lifecycle of one package in a sync batch."""

    PENDING = "pending"
    RESOLVING = "resolving"
    DOWNLOADING = "downloading"
    EMBEDDING = "embedding"
    GENERATING = "generating"
    DONE = "done"
    ERROR = "error"


# Forward order of the happy path; phases may be skipped but never revisited
_ORDER = [
    SyncStatus.PENDING,
    SyncStatus.RESOLVING,
    SyncStatus.DOWNLOADING,
    SyncStatus.EMBEDDING,
    SyncStatus.GENERATING,
    SyncStatus.DONE,
]

TERMINAL_STATES = {SyncStatus.DONE, SyncStatus.ERROR}


def can_transition(current: SyncStatus, target: SyncStatus) -> bool:
    """Whether ``current -> target`` is allowed.

    Staying in the same phase is allowed (message updates). ``error`` is
    reachable from any non-terminal state. Terminal states are final.
    """
    if current in TERMINAL_STATES:
        return False
    if target == SyncStatus.ERROR or target == current:
        return True
    return _ORDER.index(target) > _ORDER.index(current)


@dataclass
class ProgressEvent:
    package: str
    phase: SyncStatus
    message: str = ""
    version: Optional[str] = None
    preview: Optional[str] = None


@dataclass
class PackageSyncState:
    """Current status of one package, updated only through events."""

    name: str
    status: SyncStatus = SyncStatus.PENDING
    message: str = ""
    version: Optional[str] = None
    preview: Optional[str] = None

    def apply(self, event: ProgressEvent) -> None:
        if not can_transition(self.status, event.phase):
            raise InvalidTransition(self.name, self.status.value, event.phase.value)
        self.status = event.phase
        self.message = event.message
        if event.version:
            self.version = event.version
        # Previews only make sense while generating
        self.preview = event.preview if event.phase == SyncStatus.GENERATING else None


Subscriber = Callable[[ProgressEvent], None]


class ProgressChannel:
    """Fan-out of progress events to subscribers, plus the state table."""

    def __init__(self, packages: Optional[List[str]] = None):
        self.states: Dict[str, PackageSyncState] = {}
        self._subscribers: List[Subscriber] = []
        for name in packages or []:
            self.states[name] = PackageSyncState(name)

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a subscriber. Returns a function that unsubscribes it."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def emit(self, event: ProgressEvent) -> None:
        """Apply ``event`` to its package state, then notify subscribers.

        Raises:
            InvalidTransition: if the phase change is not allowed
        """
        state = self.states.setdefault(event.package, PackageSyncState(event.package))
        state.apply(event)
        log.log_phase(event.package, event.phase.value, event.message)
        for subscriber in list(self._subscribers):
            subscriber(event)

    def update(
        self,
        package: str,
        phase: SyncStatus,
        message: str = "",
        version: Optional[str] = None,
        preview: Optional[str] = None,
    ) -> None:
        self.emit(ProgressEvent(package, phase, message, version, preview))

    def reset(self, package: str) -> None:
        """Start a package over from ``pending`` (e.g. a repeated name)."""
        self.states[package] = PackageSyncState(package)

    def is_finished(self) -> bool:
        return all(s.status in TERMINAL_STATES for s in self.states.values())
