"""
Message model for the reflection transcript.

Every turn of a conversation is one of the variants below. Together they
form the closed union ChatMessage. Consumers (serializer, restore, console
rendering) dispatch over the variants exhaustively and raise TypeError on
anything else, so adding a variant means touching every consumer.

Rules:
- Messages are immutable and append-only within a session
- SelectedVoice.expanded is the only field that ever changes, and it
  changes by replacing the message with a copy that keeps the same id
- Ids are unique within a session, except Loading which always uses
  LOADING_MESSAGE_ID so at most one can exist and it can be removed by id
"""

from dataclasses import dataclass, field, replace
from typing import ClassVar, Dict, Optional, Tuple, Type

from backend.contracts import Passage
from backend.utils.helpers import generate_message_id

LOADING_MESSAGE_ID = "loading"


@dataclass(frozen=True)
class Greeting:
    text: str
    id: str = field(default_factory=generate_message_id)
    type: ClassVar[str] = "greeting"


@dataclass(frozen=True)
class UserInput:
    """The user's opening statement"""
    text: str
    id: str = field(default_factory=generate_message_id)
    type: ClassVar[str] = "user_input"


@dataclass(frozen=True)
class ClarifyingQuestion:
    """AI-authored question, optionally preceded by a short acknowledgment"""
    text: str
    acknowledgment: Optional[str] = None
    id: str = field(default_factory=generate_message_id)
    type: ClassVar[str] = "clarifying_question"


@dataclass(frozen=True)
class UserResponse:
    """
    Any free text after the opening statement: the clarification answer,
    refined context while voices are shown, or a reflection.
    """
    text: str
    id: str = field(default_factory=generate_message_id)
    type: ClassVar[str] = "user_response"


@dataclass(frozen=True)
class VoicesIntro:
    text: str
    id: str = field(default_factory=generate_message_id)
    type: ClassVar[str] = "voices_intro"


@dataclass(frozen=True)
class VoiceCards:
    """A batch of candidate passages offered together"""
    voices: Tuple[Passage, ...]
    id: str = field(default_factory=generate_message_id)
    type: ClassVar[str] = "voice_cards"


@dataclass(frozen=True)
class SelectedVoice:
    """
    The passage the user chose.

    expanded controls presentation only. Collapsing a voice never
    changes what the conversation means.
    """
    voice: Passage
    expanded: bool = True
    id: str = field(default_factory=generate_message_id)
    type: ClassVar[str] = "selected_voice"


@dataclass(frozen=True)
class Loading:
    """Transient in-progress indicator. Never persisted."""
    text: Optional[str] = None
    id: str = LOADING_MESSAGE_ID
    type: ClassVar[str] = "loading"


@dataclass(frozen=True)
class ReflectionAcknowledgment:
    text: str
    id: str = field(default_factory=generate_message_id)
    type: ClassVar[str] = "reflection_acknowledgment"


ChatMessage = (
    Greeting | UserInput | ClarifyingQuestion | UserResponse | VoicesIntro
    | VoiceCards | SelectedVoice | Loading | ReflectionAcknowledgment
)

# type tag -> variant class
MESSAGE_TYPES: Dict[str, Type] = {
    cls.type: cls
    for cls in (
        Greeting, UserInput, ClarifyingQuestion, UserResponse, VoicesIntro,
        VoiceCards, SelectedVoice, Loading, ReflectionAcknowledgment,
    )
}

# Variants that carry a plain text payload
TEXT_MESSAGE_TYPES = (
    Greeting, UserInput, ClarifyingQuestion, UserResponse,
    VoicesIntro, ReflectionAcknowledgment,
)


def loading(text: Optional[str] = None) -> Loading:
    """Build the (single) loading message"""
    return Loading(text=text)


def with_expanded(message: SelectedVoice, expanded: bool) -> SelectedVoice:
    """Copy of a selected voice with a new expanded flag and the same id"""
    if not isinstance(message, SelectedVoice):
        raise TypeError(f"Only selected_voice can be expanded, got {type(message).__name__}")
    return replace(message, expanded=expanded)


def message_text(message: ChatMessage) -> Optional[str]:
    """
    Text payload of a message, if it has one.

    Returns:
        str for text-bearing variants, None for voice cards,
        selected voice and loading
    """
    if isinstance(message, TEXT_MESSAGE_TYPES):
        return message.text
    if isinstance(message, (VoiceCards, SelectedVoice, Loading)):
        return None
    raise TypeError(f"Unknown message variant: {type(message).__name__}")


def is_user_authored(message: ChatMessage) -> bool:
    return isinstance(message, (UserInput, UserResponse))
