"""
Conversation stage enum for the guided reflection flow.

Invariants:
- Exactly one stage is active at any time
- Stage changes happen only inside ConversationStateMachine.apply()
- A voice is selected iff the stage is one of SELECTION_STAGES
- LOADING_STAGES are the only stages with an external call in flight

Design:
- ChatStage is a string-based enum for JSON serialization
- Snapshot restore validates stage strings against VALID_STAGES
- DialogueManager reacts to LOADING_STAGES by issuing the matching call
- The UI only accepts free text in INPUT_STAGES
"""

from enum import Enum


class ChatStage(str, Enum):
    """
    Position of a reflection conversation.

    INITIAL:
        Fresh session, nothing shown yet.
        Exit: greeting added -> AWAITING_INPUT

    AWAITING_INPUT:
        Greeting shown, waiting for the user's opening statement.
        Exit: user input submitted -> LOADING_CLARIFY

    LOADING_CLARIFY:
        Clarification call in flight.
        Exit: question ready or failed (fallback) -> AWAITING_RESPONSE

    AWAITING_RESPONSE:
        Clarifying question shown, waiting for the user's answer.
        Exit: answer submitted -> LOADING_VOICES

    LOADING_VOICES:
        Wisdom retrieval call in flight.
        Exit: passages ready -> SHOWING_VOICES
              retrieval failed -> stays here with error set

    SHOWING_VOICES:
        Voice cards on screen.
        Exit: voice picked -> VOICE_SELECTED
              extra text -> LOADING_VOICES
              none selected -> AWAITING_RESPONSE

    VOICE_SELECTED:
        One voice expanded, waiting for the user's reflection.
        Exit: reflection submitted -> GENERATING_ACKNOWLEDGMENT

    GENERATING_ACKNOWLEDGMENT:
        Acknowledgment call in flight.
        Exit: ready or failed (fallback) -> REFLECTION_ACKNOWLEDGED

    REFLECTION_ACKNOWLEDGED:
        No hard terminal state. The user keeps reflecting or asks for more.
        Exit: continue reflecting -> GENERATING_ACKNOWLEDGMENT
              wants more voices -> LOADING_VOICES
    """
    INITIAL = "initial"
    AWAITING_INPUT = "awaiting_input"
    LOADING_CLARIFY = "loading_clarify"
    AWAITING_RESPONSE = "awaiting_response"
    LOADING_VOICES = "loading_voices"
    SHOWING_VOICES = "showing_voices"
    VOICE_SELECTED = "voice_selected"
    GENERATING_ACKNOWLEDGMENT = "generating_acknowledgment"
    REFLECTION_ACKNOWLEDGED = "reflection_acknowledged"


# Single source of truth for valid stage strings
# Used by snapshot restore for validation (fail-fast on corruption)
VALID_STAGES = {stage.value for stage in ChatStage}

# Stages in which selected_voice must be set
SELECTION_STAGES = frozenset({
    ChatStage.VOICE_SELECTED,
    ChatStage.GENERATING_ACKNOWLEDGMENT,
    ChatStage.REFLECTION_ACKNOWLEDGED,
})

# Stages that own an outstanding external call
LOADING_STAGES = frozenset({
    ChatStage.LOADING_CLARIFY,
    ChatStage.LOADING_VOICES,
    ChatStage.GENERATING_ACKNOWLEDGMENT,
})

# Stages in which the UI accepts free text
INPUT_STAGES = frozenset({
    ChatStage.AWAITING_INPUT,
    ChatStage.AWAITING_RESPONSE,
    ChatStage.SHOWING_VOICES,
    ChatStage.VOICE_SELECTED,
    ChatStage.REFLECTION_ACKNOWLEDGED,
})


def parse_stage(value: str) -> ChatStage:
    """
    Convert a persisted stage string to ChatStage.

    Raises:
        ValueError: If value is not a known stage
    """
    if value not in VALID_STAGES:
        raise ValueError(f"Unknown conversation stage: {value!r}")
    return ChatStage(value)
