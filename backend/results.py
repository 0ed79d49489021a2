"""
Result types returned by DialogueManager and session restore

These are the ONLY return types from the orchestrating layer.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from backend.core.conversation_state_machine import ConversationState
from backend.core.messages import ChatMessage


@dataclass(frozen=True)
class TurnResult:
    """
    Action accepted and processed (including any external call it triggered).

    Attributes:
        state: Session state after the turn
        new_messages: Messages appended during the turn, in order
        error: User-visible error left on the state, if any
        debug: Debug information (calls made, intent, timings)
    """
    state: ConversationState
    new_messages: Tuple[ChatMessage, ...] = ()
    error: Optional[str] = None
    debug: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class IllegalTransition:
    """
    Action rejected (not valid in the current stage, or session closed).

    State is unchanged when this is returned.

    Attributes:
        reason: Human-readable explanation
        action_type: Name of rejected action type
        stage: Stage the session was in
    """
    reason: str
    action_type: str
    stage: str


@dataclass(frozen=True)
class RestoredSession:
    """Live state rebuilt from a journal entry snapshot"""
    state: ConversationState


@dataclass(frozen=True)
class RestoreUnavailable:
    """
    Entry cannot be resumed. Callers fall back to a read-only replay.

    Examples:
    - Entry has no conversation_data (legacy row)
    - conversation_data names an unknown stage
    - A stored passage is malformed
    """
    reason: str


@dataclass(frozen=True)
class SaveResult:
    """
    Outcome of a save attempt.

    Attributes:
        saved: True if the entry was written (created or updated)
        entry_id: Journal entry id backing the session, if any
        requires_signup: True if the user is not authenticated. Nothing
            was written, the UI should prompt sign-up.
        already_saved: True if the current selection was saved before and
            nothing was written this time
        error: Failure message when the write itself failed
    """
    saved: bool
    entry_id: Optional[str] = None
    requires_signup: bool = False
    already_saved: bool = False
    error: Optional[str] = None


RestoreResult = RestoredSession | RestoreUnavailable
