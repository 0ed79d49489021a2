"""
Conversation Serializer - Snapshot of a live conversation for persistence

Responsibilities:
- Capture a ConversationState as a ConversationSnapshot
- Map snapshots to and from the persisted JSON shape (journal
  conversation_data column)
- Map individual messages to and from their stored form

Stored form rules:
- Loading messages are never stored
- Message ids are not stored. Restore assigns fresh ones.
- Every stored message carries the capture timestamp
- selected_voice is stored without its expanded flag

Design principles:
- Pure apart from the capture timestamp, which callers can inject
- Unknown message variants raise TypeError on the way out
- Malformed stored payloads raise ValueError on the way in
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from backend.contracts import Passage
from backend.core.conversation_state_machine import ConversationState
from backend.core.messages import (
    ChatMessage,
    ClarifyingQuestion,
    Greeting,
    Loading,
    ReflectionAcknowledgment,
    SelectedVoice,
    UserInput,
    UserResponse,
    VoiceCards,
    VoicesIntro,
)
from backend.utils.conversation_stages import ChatStage, parse_stage
from backend.utils.helpers import utc_now_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredMessage:
    """A transcript message as it sits in a snapshot"""
    message: ChatMessage
    timestamp: str


@dataclass(frozen=True)
class ConversationSnapshot:
    """
    Serializable capture of a conversation at a save point.

    Attributes:
        messages: Stored transcript (loading excluded)
        stage: Stage at capture time
        user_input: Opening statement
        clarification: Latest clarification / reflection text
        selected_voice: Voice selected at capture time, if any
        shown_thinkers: Thinkers presented so far
        saved_at: ISO-8601 UTC capture time
        is_complete: True iff a voice was selected at capture time
        fetched_voices: Last fetched passage set. None when the stored
            payload predates this key.
    """
    messages: Tuple[StoredMessage, ...]
    stage: ChatStage
    user_input: str
    clarification: str
    selected_voice: Optional[Passage]
    shown_thinkers: Tuple[str, ...]
    saved_at: str
    is_complete: bool
    fetched_voices: Optional[Tuple[Passage, ...]] = None

    def to_json(self) -> Dict[str, Any]:
        data = {
            'messages': [message_to_json(m.message, m.timestamp) for m in self.messages],
            'stage': self.stage.value,
            'userInput': self.user_input,
            'clarification': self.clarification,
            'selectedVoice': self.selected_voice.to_json() if self.selected_voice else None,
            'shownThinkers': list(self.shown_thinkers),
            'savedAt': self.saved_at,
            'isComplete': self.is_complete,
        }
        if self.fetched_voices is not None:
            data['fetchedVoices'] = [p.to_json() for p in self.fetched_voices]
        return data

    @staticmethod
    def from_json(data: Dict[str, Any]) -> "ConversationSnapshot":
        """
        Parse a stored snapshot.

        Args:
            data: conversation_data dict

        Returns:
            ConversationSnapshot

        Raises:
            ValueError: If the payload is not a dict, lacks messages or
                stage, names an unknown stage, or holds a malformed
                message or passage
        """
        if not isinstance(data, dict):
            raise ValueError(f"conversation_data must be dict, got {type(data).__name__}")

        raw_messages = data.get('messages')
        if not isinstance(raw_messages, list):
            raise ValueError("conversation_data.messages must be a list")

        if 'stage' not in data:
            raise ValueError("conversation_data missing 'stage'")
        stage = parse_stage(data['stage'])

        messages = []
        for index, raw in enumerate(raw_messages):
            if isinstance(raw, dict) and raw.get('type') == Loading.type:
                # Older clients could leave an indicator behind
                logger.debug(f"Skipping stored loading message at index {index}")
                continue
            messages.append(StoredMessage(
                message=message_from_json(raw),
                timestamp=str(raw.get('timestamp', '')),
            ))

        selected_raw = data.get('selectedVoice')
        selected_voice = Passage.from_json(selected_raw) if selected_raw else None

        fetched_raw = data.get('fetchedVoices')
        if fetched_raw is None:
            fetched_voices = None
        elif isinstance(fetched_raw, list):
            fetched_voices = tuple(Passage.from_json(p) for p in fetched_raw)
        else:
            raise ValueError("conversation_data.fetchedVoices must be a list")

        shown = data.get('shownThinkers') or []
        if not isinstance(shown, list):
            raise ValueError("conversation_data.shownThinkers must be a list")

        return ConversationSnapshot(
            messages=tuple(messages),
            stage=stage,
            user_input=data.get('userInput') or '',
            clarification=data.get('clarification') or '',
            selected_voice=selected_voice,
            shown_thinkers=tuple(dict.fromkeys(str(t) for t in shown)),
            saved_at=data.get('savedAt') or '',
            is_complete=bool(data.get('isComplete', selected_voice is not None)),
            fetched_voices=fetched_voices,
        )


# ========================
# Message mapping
# ========================

def message_to_json(message: ChatMessage, timestamp: str) -> Dict[str, Any]:
    """
    Stored form of one message.

    Raises:
        TypeError: For loading (never stored) or an unknown variant
    """
    data: Dict[str, Any] = {'type': getattr(message, 'type', None)}

    if isinstance(message, (Greeting, UserInput, UserResponse, VoicesIntro, ReflectionAcknowledgment)):
        data['text'] = message.text
    elif isinstance(message, ClarifyingQuestion):
        data['text'] = message.text
        if message.acknowledgment:
            data['acknowledgment'] = message.acknowledgment
    elif isinstance(message, VoiceCards):
        data['voices'] = [p.to_json() for p in message.voices]
    elif isinstance(message, SelectedVoice):
        data['voice'] = message.voice.to_json()
    elif isinstance(message, Loading):
        raise TypeError("loading messages are never stored")
    else:
        raise TypeError(f"Unknown message variant: {type(message).__name__}")

    data['timestamp'] = timestamp
    return data


def _require_text(data: Dict[str, Any]) -> str:
    text = data.get('text')
    if not isinstance(text, str):
        raise ValueError(f"{data.get('type')} message missing text")
    return text


def message_from_json(data: Dict[str, Any]) -> ChatMessage:
    """
    Live message from its stored form, with a fresh id.

    selected_voice always comes back expanded.

    Raises:
        ValueError: Unknown type or missing payload
    """
    if not isinstance(data, dict):
        raise ValueError(f"stored message must be dict, got {type(data).__name__}")

    message_type = data.get('type')

    if message_type == Greeting.type:
        return Greeting(_require_text(data))
    if message_type == UserInput.type:
        return UserInput(_require_text(data))
    if message_type == ClarifyingQuestion.type:
        return ClarifyingQuestion(text=_require_text(data), acknowledgment=data.get('acknowledgment') or None)
    if message_type == UserResponse.type:
        return UserResponse(_require_text(data))
    if message_type == VoicesIntro.type:
        return VoicesIntro(_require_text(data))
    if message_type == ReflectionAcknowledgment.type:
        return ReflectionAcknowledgment(_require_text(data))
    if message_type == VoiceCards.type:
        voices = data.get('voices')
        if not isinstance(voices, list):
            raise ValueError("voice_cards message missing voices")
        return VoiceCards(tuple(Passage.from_json(p) for p in voices))
    if message_type == SelectedVoice.type:
        return SelectedVoice(voice=Passage.from_json(data.get('voice')), expanded=True)

    raise ValueError(f"Unknown stored message type: {message_type!r}")


# ========================
# Capture
# ========================

def serialize(state: ConversationState, now: Optional[str] = None) -> ConversationSnapshot:
    """
    Capture a state for persistence.

    Args:
        state: Live conversation state
        now: ISO-8601 capture time. Defaults to current UTC time.

    Returns:
        ConversationSnapshot
    """
    captured_at = now or utc_now_iso()

    stored = tuple(
        StoredMessage(message=m, timestamp=captured_at)
        for m in state.messages
        if not isinstance(m, Loading)
    )

    snapshot = ConversationSnapshot(
        messages=stored,
        stage=state.stage,
        user_input=state.user_input,
        clarification=state.clarification,
        selected_voice=state.selected_voice,
        shown_thinkers=state.shown_thinkers,
        saved_at=captured_at,
        is_complete=state.selected_voice is not None,
        fetched_voices=state.fetched_voices,
    )

    logger.debug(f"Serialized {len(stored)} messages at stage {state.stage.value}")
    return snapshot


def snapshot_to_json(state: ConversationState, now: Optional[str] = None) -> Dict[str, Any]:
    """serialize() straight to the persisted dict"""
    return serialize(state, now=now).to_json()
