"""
Action types for ConversationStateMachine.

Actions are the ONLY way a ConversationState changes.
No direct field edits. No ad hoc message surgery. Actions only.

Two families:
- Transitions: move the conversation between stages
- Bookkeeping: loading indicator, saved flag, entry id, error,
  voice expansion. These never change the stage.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from backend.contracts import Passage


# Transitions

@dataclass(frozen=True)
class AddGreeting:
    """
    Open a fresh session.

    Valid in: initial
    Moves to: awaiting_input
    """
    user_name: Optional[str] = None


@dataclass(frozen=True)
class SubmitUserInput:
    """
    User's opening statement.

    Valid in: awaiting_input
    Moves to: loading_clarify
    """
    text: str


@dataclass(frozen=True)
class ClarifyingQuestionReady:
    """Valid in: loading_clarify. Moves to: awaiting_response"""
    acknowledgment: Optional[str]
    question: str


@dataclass(frozen=True)
class ClarifyingQuestionFailed:
    """
    Clarification call failed. A fallback question is appended.

    Valid in: loading_clarify
    Moves to: awaiting_response
    """
    error: str


@dataclass(frozen=True)
class SubmitUserResponse:
    """
    Answer to a clarifying question, or extra context while voices
    are shown. Overwrites clarification.

    Valid in: awaiting_response, showing_voices,
              loading_voices (only after a failed retrieval)
    Moves to: loading_voices
    """
    text: str


@dataclass(frozen=True)
class VoicesReady:
    """Valid in: loading_voices. Moves to: showing_voices"""
    passages: Tuple[Passage, ...]
    intro: Optional[str] = None


@dataclass(frozen=True)
class VoicesFailed:
    """
    Retrieval failed. Error is surfaced, no voice cards, no auto-retry.

    Valid in: loading_voices
    Moves to: loading_voices (unchanged)
    """
    error: str


@dataclass(frozen=True)
class SelectVoice:
    """Valid in: showing_voices. Moves to: voice_selected"""
    voice: Passage


@dataclass(frozen=True)
class NoneSelected:
    """
    None of the offered voices resonated.

    Valid in: showing_voices
    Moves to: awaiting_response
    """
    pass


@dataclass(frozen=True)
class SubmitReflection:
    """
    Reflection on the selected voice. Overwrites clarification.

    Valid in: voice_selected, reflection_acknowledged
    Moves to: generating_acknowledgment
    """
    text: str


@dataclass(frozen=True)
class AcknowledgmentReady:
    """Valid in: generating_acknowledgment. Moves to: reflection_acknowledged"""
    text: str


@dataclass(frozen=True)
class AcknowledgmentFailed:
    """
    Acknowledgment call failed. A fallback acknowledgment is appended.

    Valid in: generating_acknowledgment
    Moves to: reflection_acknowledged
    """
    error: str


@dataclass(frozen=True)
class WantsMoreVoices:
    """
    New retrieval after a reflection. The current voice collapses but
    stays in the transcript.

    Valid in: reflection_acknowledged
    Moves to: loading_voices
    """
    pass


@dataclass(frozen=True)
class SeeAnotherFromSameSet:
    """
    Re-show the previously fetched passages without a new call.

    Valid in: any stage, as long as a passage set was fetched
    Moves to: showing_voices
    """
    pass


@dataclass(frozen=True)
class StartOver:
    """
    Discard the transcript and greet again.

    Valid in: any stage
    Moves to: awaiting_input
    """
    user_name: Optional[str] = None


# Bookkeeping

@dataclass(frozen=True)
class SetLoading:
    """Show the loading indicator, replacing any existing one"""
    text: Optional[str] = None


@dataclass(frozen=True)
class ClearLoading:
    pass


@dataclass(frozen=True)
class ExpandVoice:
    """Toggle presentation of the current selected voice"""
    expanded: bool


@dataclass(frozen=True)
class MarkSaved:
    saved: bool = True


@dataclass(frozen=True)
class SetJournalEntryId:
    entry_id: Optional[str]


@dataclass(frozen=True)
class SetError:
    error: Optional[str]


# Action union types for type hints
Transition = (
    AddGreeting | SubmitUserInput | ClarifyingQuestionReady | ClarifyingQuestionFailed
    | SubmitUserResponse | VoicesReady | VoicesFailed | SelectVoice | NoneSelected
    | SubmitReflection | AcknowledgmentReady | AcknowledgmentFailed | WantsMoreVoices
    | SeeAnotherFromSameSet | StartOver
)
Bookkeeping = SetLoading | ClearLoading | ExpandVoice | MarkSaved | SetJournalEntryId | SetError
Action = Transition | Bookkeeping
