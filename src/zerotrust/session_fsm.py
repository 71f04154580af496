"""
Zerotrust - Session State Machine for peer session lifecycle management.

This module implements a formal finite state machine for the peer session
lifecycle. Transitions are validated against a fixed table and applied under
a lock, so concurrent workers (establishment, handshake, pump, close) never
race on a loosely-synchronized flag: exactly one of two competing events
wins, and the loser sees its transition refused.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional

from .constants import STATE_HISTORY_MAX

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Lifecycle states of a peer session."""

    CREATED = auto()  # Constructed, no transport yet
    LISTENING = auto()  # Waiting for one inbound connection
    CONNECTING = auto()  # Dialing a remote peer
    CONNECTED = auto()  # Transport established
    ID_EXCHANGED = auto()  # Peer identifiers swapped
    KEY_EXCHANGED = auto()  # Session key derived
    ACTIVE = auto()  # Message pump running
    CLOSING = auto()  # Releasing resources
    CLOSED = auto()  # Terminal
    FAILED = auto()  # I/O or protocol error, awaiting cleanup


class SessionEvent(Enum):
    """Events that trigger state transitions."""

    LISTEN_REQUESTED = auto()
    CONNECT_REQUESTED = auto()
    TRANSPORT_ESTABLISHED = auto()
    IDS_EXCHANGED = auto()
    KEY_ESTABLISHED = auto()
    PUMP_STARTED = auto()
    ERROR_OCCURRED = auto()
    CLOSE_REQUESTED = auto()
    CLOSED = auto()


@dataclass
class StateTransition:
    """Represents a state transition."""

    from_state: SessionState
    event: SessionEvent
    to_state: SessionState
    timestamp: float = field(default_factory=time.time)


# States in which a handshake-derived session key exists
KEYED_STATES = frozenset(
    {
        SessionState.KEY_EXCHANGED,
        SessionState.ACTIVE,
        SessionState.CLOSING,
        SessionState.CLOSED,
    }
)

# States in which the session owns a live transport
TRANSPORT_STATES = frozenset(
    {
        SessionState.CONNECTED,
        SessionState.ID_EXCHANGED,
        SessionState.KEY_EXCHANGED,
        SessionState.ACTIVE,
    }
)


class SessionStateMachine:
    """
    Finite state machine for a single peer session.

    Enforces valid state transitions and tracks state history. All reads and
    writes of the current state go through a lock.
    """

    TRANSITIONS: Dict[SessionState, Dict[SessionEvent, SessionState]] = {
        SessionState.CREATED: {
            SessionEvent.LISTEN_REQUESTED: SessionState.LISTENING,
            SessionEvent.CONNECT_REQUESTED: SessionState.CONNECTING,
            SessionEvent.ERROR_OCCURRED: SessionState.FAILED,
            SessionEvent.CLOSE_REQUESTED: SessionState.CLOSING,
        },
        SessionState.LISTENING: {
            SessionEvent.TRANSPORT_ESTABLISHED: SessionState.CONNECTED,
            SessionEvent.ERROR_OCCURRED: SessionState.FAILED,
            SessionEvent.CLOSE_REQUESTED: SessionState.CLOSING,
        },
        SessionState.CONNECTING: {
            SessionEvent.TRANSPORT_ESTABLISHED: SessionState.CONNECTED,
            SessionEvent.ERROR_OCCURRED: SessionState.FAILED,
            SessionEvent.CLOSE_REQUESTED: SessionState.CLOSING,
        },
        SessionState.CONNECTED: {
            SessionEvent.IDS_EXCHANGED: SessionState.ID_EXCHANGED,
            SessionEvent.ERROR_OCCURRED: SessionState.FAILED,
            SessionEvent.CLOSE_REQUESTED: SessionState.CLOSING,
        },
        SessionState.ID_EXCHANGED: {
            SessionEvent.KEY_ESTABLISHED: SessionState.KEY_EXCHANGED,
            SessionEvent.ERROR_OCCURRED: SessionState.FAILED,
            SessionEvent.CLOSE_REQUESTED: SessionState.CLOSING,
        },
        SessionState.KEY_EXCHANGED: {
            SessionEvent.PUMP_STARTED: SessionState.ACTIVE,
            SessionEvent.ERROR_OCCURRED: SessionState.FAILED,
            SessionEvent.CLOSE_REQUESTED: SessionState.CLOSING,
        },
        SessionState.ACTIVE: {
            SessionEvent.ERROR_OCCURRED: SessionState.FAILED,
            SessionEvent.CLOSE_REQUESTED: SessionState.CLOSING,
        },
        SessionState.FAILED: {
            SessionEvent.CLOSE_REQUESTED: SessionState.CLOSING,
        },
        SessionState.CLOSING: {
            SessionEvent.CLOSED: SessionState.CLOSED,
        },
        SessionState.CLOSED: {},
    }

    def __init__(
        self,
        name: str = "session",
        on_state_change: Optional[Callable[[SessionState, SessionState], None]] = None,
    ):
        """
        Initialize state machine in CREATED.

        Args:
            name: Label used in log messages
            on_state_change: Called with (old, new) after every applied transition
        """
        self.name = name
        self._lock = threading.RLock()
        self._state = SessionState.CREATED
        self.previous_state: Optional[SessionState] = None
        self.state_entry_time = time.time()
        self.error_message: Optional[str] = None
        self.transition_history: List[StateTransition] = []
        self.max_history = STATE_HISTORY_MAX
        self.on_state_change = on_state_change

        logger.debug(f"[{self.name}] State machine initialized in state: {self._state.name}")

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    def transition(self, event: SessionEvent, error_msg: Optional[str] = None) -> bool:
        """
        Attempt state transition based on event.

        Args:
            event: Event triggering transition
            error_msg: Error message if event is ERROR_OCCURRED

        Returns:
            True if transition applied, False if refused from the current state
        """
        with self._lock:
            old_state = self._state
            if not self.is_valid_transition(old_state, event):
                logger.debug(
                    f"[{self.name}] Refused transition: {old_state.name} + {event.name}"
                )
                return False

            new_state = self.TRANSITIONS[old_state][event]
            if event == SessionEvent.ERROR_OCCURRED:
                self.error_message = error_msg or "Unknown error"

            self.previous_state = old_state
            self._state = new_state
            self.state_entry_time = time.time()

            self.transition_history.append(StateTransition(old_state, event, new_state))
            if len(self.transition_history) > self.max_history:
                self.transition_history = self.transition_history[-self.max_history :]

        logger.info(
            f"[{self.name}] State transition: {old_state.name} -> {new_state.name} "
            f"(event: {event.name})"
        )

        if self.on_state_change:
            try:
                self.on_state_change(old_state, new_state)
            except Exception as e:
                logger.error(f"[{self.name}] State change callback error: {e}")

        return True

    def is_valid_transition(self, from_state: SessionState, event: SessionEvent) -> bool:
        """Check if a transition is valid."""
        return event in self.TRANSITIONS.get(from_state, {})

    def is_keyed(self) -> bool:
        """Check if the current state implies a derived session key."""
        return self.state in KEYED_STATES

    def has_transport(self) -> bool:
        """Check if the current state implies a live transport."""
        return self.state in TRANSPORT_STATES

    def is_terminal(self) -> bool:
        """Check if the session can no longer make progress."""
        return self.state in (SessionState.FAILED, SessionState.CLOSING, SessionState.CLOSED)

    def get_time_in_state(self) -> float:
        """Get time spent in current state (seconds)."""
        return time.time() - self.state_entry_time

    def get_history(self, count: int = 10) -> List[StateTransition]:
        """Get the most recent transitions."""
        with self._lock:
            return self.transition_history[-count:]

    def get_statistics(self) -> Dict[str, Any]:
        """
        Get state machine statistics.

        Returns:
            Dictionary with statistics
        """
        with self._lock:
            event_counts: Dict[str, int] = {}
            for transition in self.transition_history:
                event_name = transition.event.name
                event_counts[event_name] = event_counts.get(event_name, 0) + 1

            return {
                "current_state": self._state.name,
                "previous_state": self.previous_state.name if self.previous_state else None,
                "time_in_state": self.get_time_in_state(),
                "error_message": self.error_message,
                "total_transitions": len(self.transition_history),
                "event_counts": event_counts,
            }

    def __repr__(self) -> str:
        return (
            f"SessionStateMachine(name={self.name!r}, state={self.state.name}, "
            f"time_in_state={self.get_time_in_state():.1f}s)"
        )
