"""
Conversation State Machine - Guided reflection flow (Functional Core)

Responsibilities:
- Hold the transcript, the current stage and derived fields
- Apply actions as pure transitions: (state, action) -> new state
- Enforce stage gating (which action is valid where)
- Substitute fallback messages for failed external calls
- Keep the loading indicator exclusive

Design principles:
- ConversationState is an immutable value, never edited in place
- apply() has no side effects (logging excepted)
- Invalid actions are caller bugs: logged and ignored, state unchanged
- No external calls here. DialogueManager issues them and feeds results
  back as *Ready / *Failed actions

Stage diagram:

    initial --AddGreeting--> awaiting_input --SubmitUserInput--> loading_clarify
    loading_clarify --ClarifyingQuestionReady|Failed--> awaiting_response
    awaiting_response --SubmitUserResponse--> loading_voices
    loading_voices --VoicesReady--> showing_voices
    loading_voices --VoicesFailed--> loading_voices (error set)
    showing_voices --SelectVoice--> voice_selected
    showing_voices --SubmitUserResponse--> loading_voices
    showing_voices --NoneSelected--> awaiting_response
    voice_selected --SubmitReflection--> generating_acknowledgment
    generating_acknowledgment --AcknowledgmentReady|Failed--> reflection_acknowledged
    reflection_acknowledged --SubmitReflection--> generating_acknowledgment
    reflection_acknowledged --WantsMoreVoices--> loading_voices
    (any) --SeeAnotherFromSameSet--> showing_voices
    (any) --StartOver--> awaiting_input
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from backend.commands import (
    AcknowledgmentFailed,
    AcknowledgmentReady,
    Action,
    AddGreeting,
    ClarifyingQuestionFailed,
    ClarifyingQuestionReady,
    ClearLoading,
    ExpandVoice,
    MarkSaved,
    NoneSelected,
    SeeAnotherFromSameSet,
    SelectVoice,
    SetError,
    SetJournalEntryId,
    SetLoading,
    StartOver,
    SubmitReflection,
    SubmitUserInput,
    SubmitUserResponse,
    VoicesFailed,
    VoicesReady,
    WantsMoreVoices,
)
from backend.contracts import Passage
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
    loading,
    with_expanded,
)
from backend.utils import fallbacks
from backend.utils.conversation_stages import ChatStage, SELECTION_STAGES
from backend.utils.helpers import get_greeting

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationState:
    """
    Session aggregate. Immutable value.

    Attributes:
        messages: Transcript in insertion order (never reordered)
        stage: Current position in the flow
        user_input: Opening statement, once captured
        clarification: Latest answer / refined context / reflection.
            Overwritten each time, never appended.
        selected_voice: Currently chosen passage, set iff stage is in
            SELECTION_STAGES
        shown_thinkers: Thinker names already presented. Append-only,
            no duplicates, first-seen order.
        is_saved: Whether the current selection has been persisted
        journal_entry_id: Backing journal entry, None until first save
        error: Last recoverable error, cleared by any successful transition
        fetched_voices: Most recently fetched passage set, re-shown by
            SeeAnotherFromSameSet without a new call
    """
    messages: Tuple[ChatMessage, ...] = ()
    stage: ChatStage = ChatStage.INITIAL
    user_input: str = ""
    clarification: str = ""
    selected_voice: Optional[Passage] = None
    shown_thinkers: Tuple[str, ...] = ()
    is_saved: bool = False
    journal_entry_id: Optional[str] = None
    error: Optional[str] = None
    fetched_voices: Tuple[Passage, ...] = ()

    @property
    def loading_message(self) -> Optional[Loading]:
        for message in self.messages:
            if isinstance(message, Loading):
                return message
        return None

    @property
    def is_loading(self) -> bool:
        return self.loading_message is not None

    def latest(self, message_type) -> Optional[ChatMessage]:
        """Most recent message of the given variant class, or None"""
        for message in reversed(self.messages):
            if isinstance(message, message_type):
                return message
        return None

    def user_texts(self) -> Tuple[str, ...]:
        """Texts of every user-authored message, in order"""
        return tuple(
            m.text for m in self.messages
            if isinstance(m, (UserInput, UserResponse))
        )


# ========================
# Transcript helpers (pure)
# ========================

def _without_loading(messages: Tuple[ChatMessage, ...]) -> Tuple[ChatMessage, ...]:
    return tuple(m for m in messages if not isinstance(m, Loading))


def _without_voice_cards(messages: Tuple[ChatMessage, ...]) -> Tuple[ChatMessage, ...]:
    return tuple(m for m in messages if not isinstance(m, VoiceCards))


def _latest_index(messages: Tuple[ChatMessage, ...], message_type) -> Optional[int]:
    for index in range(len(messages) - 1, -1, -1):
        if isinstance(messages[index], message_type):
            return index
    return None


def _union_thinkers(shown: Tuple[str, ...], passages: Tuple[Passage, ...]) -> Tuple[str, ...]:
    merged = list(shown)
    for passage in passages:
        if passage.thinker not in merged:
            merged.append(passage.thinker)
    return tuple(merged)


class ConversationStateMachine:
    """
    Pure reducer over ConversationState.

    Stateless, safe to share between sessions.
    """

    # Transition -> stages in which it is accepted.
    # Actions missing from this table are accepted in any stage.
    VALID_FROM = {
        AddGreeting: {ChatStage.INITIAL},
        SubmitUserInput: {ChatStage.AWAITING_INPUT},
        ClarifyingQuestionReady: {ChatStage.LOADING_CLARIFY},
        ClarifyingQuestionFailed: {ChatStage.LOADING_CLARIFY},
        SubmitUserResponse: {
            ChatStage.AWAITING_RESPONSE,
            ChatStage.SHOWING_VOICES,
            ChatStage.LOADING_VOICES,
        },
        VoicesReady: {ChatStage.LOADING_VOICES},
        VoicesFailed: {ChatStage.LOADING_VOICES},
        SelectVoice: {ChatStage.SHOWING_VOICES},
        NoneSelected: {ChatStage.SHOWING_VOICES},
        SubmitReflection: {ChatStage.VOICE_SELECTED, ChatStage.REFLECTION_ACKNOWLEDGED},
        AcknowledgmentReady: {ChatStage.GENERATING_ACKNOWLEDGMENT},
        AcknowledgmentFailed: {ChatStage.GENERATING_ACKNOWLEDGMENT},
        WantsMoreVoices: {ChatStage.REFLECTION_ACKNOWLEDGED},
    }

    def __init__(self):
        self._handlers = {
            AddGreeting: self._add_greeting,
            SubmitUserInput: self._submit_user_input,
            ClarifyingQuestionReady: self._clarifying_question_ready,
            ClarifyingQuestionFailed: self._clarifying_question_failed,
            SubmitUserResponse: self._submit_user_response,
            VoicesReady: self._voices_ready,
            VoicesFailed: self._voices_failed,
            SelectVoice: self._select_voice,
            NoneSelected: self._none_selected,
            SubmitReflection: self._submit_reflection,
            AcknowledgmentReady: self._acknowledgment_ready,
            AcknowledgmentFailed: self._acknowledgment_failed,
            WantsMoreVoices: self._wants_more_voices,
            SeeAnotherFromSameSet: self._see_another_from_same_set,
            StartOver: self._start_over,
            SetLoading: self._set_loading,
            ClearLoading: self._clear_loading,
            ExpandVoice: self._expand_voice,
            MarkSaved: self._mark_saved,
            SetJournalEntryId: self._set_journal_entry_id,
            SetError: self._set_error,
        }

    @staticmethod
    def initial_state() -> ConversationState:
        return ConversationState()

    # ========================
    # Gating
    # ========================

    def rejection_reason(self, state: ConversationState, action: Action) -> Optional[str]:
        """
        Why an action cannot be applied, or None if it can.

        Args:
            state: Current state
            action: Candidate action

        Returns:
            str reason, or None when the action is valid
        """
        action_type = type(action)
        if action_type not in self._handlers:
            return f"unknown action {action_type.__name__}"

        allowed = self.VALID_FROM.get(action_type)
        if allowed is not None and state.stage not in allowed:
            return f"{action_type.__name__} not valid in stage '{state.stage.value}'"

        text = getattr(action, 'text', None)
        if isinstance(action, (SubmitUserInput, SubmitUserResponse, SubmitReflection, AcknowledgmentReady)):
            if not isinstance(text, str) or not text.strip():
                return f"{action_type.__name__} requires non-empty text"

        if isinstance(action, ClarifyingQuestionReady) and not action.question.strip():
            return "ClarifyingQuestionReady requires a question"

        # Retry after a failed retrieval only. While the call is in flight
        # the stage must not be re-entered.
        if isinstance(action, SubmitUserResponse) and state.stage == ChatStage.LOADING_VOICES:
            if state.error is None or state.is_loading:
                return "SubmitUserResponse in loading_voices only allowed after a failed retrieval"

        if isinstance(action, VoicesReady) and not action.passages:
            return "VoicesReady requires at least one passage"

        if isinstance(action, SelectVoice):
            offered_ids = {p.id for p in state.fetched_voices}
            if action.voice.id not in offered_ids:
                return f"voice '{action.voice.id}' was not offered"

        if isinstance(action, SeeAnotherFromSameSet) and not state.fetched_voices:
            return "no previously fetched voices to show"

        return None

    def can_apply(self, state: ConversationState, action: Action) -> bool:
        return self.rejection_reason(state, action) is None

    def apply(self, state: ConversationState, action: Action) -> ConversationState:
        """
        Apply one action.

        Args:
            state: Current state (not modified)
            action: Action from backend.commands

        Returns:
            ConversationState: New state, or the same state if the action
            was rejected
        """
        reason = self.rejection_reason(state, action)
        if reason is not None:
            logger.warning(f"Rejected action: {reason}")
            return state

        new_state = self._handlers[type(action)](state, action)

        if new_state.stage != state.stage:
            logger.info(f"Stage: {state.stage.value} -> {new_state.stage.value} ({type(action).__name__})")

        return new_state

    # ========================
    # Transitions
    # ========================

    def _add_greeting(self, state: ConversationState, action: AddGreeting) -> ConversationState:
        return replace(
            state,
            messages=state.messages + (Greeting(get_greeting(action.user_name)),),
            stage=ChatStage.AWAITING_INPUT,
            error=None,
        )

    def _submit_user_input(self, state: ConversationState, action: SubmitUserInput) -> ConversationState:
        return replace(
            state,
            messages=state.messages + (UserInput(action.text),),
            user_input=action.text,
            stage=ChatStage.LOADING_CLARIFY,
            error=None,
        )

    def _clarifying_question_ready(self, state: ConversationState,
                                   action: ClarifyingQuestionReady) -> ConversationState:
        question = ClarifyingQuestion(text=action.question, acknowledgment=action.acknowledgment or None)
        return replace(
            state,
            messages=_without_loading(state.messages) + (question,),
            stage=ChatStage.AWAITING_RESPONSE,
            error=None,
        )

    def _clarifying_question_failed(self, state: ConversationState,
                                    action: ClarifyingQuestionFailed) -> ConversationState:
        question = ClarifyingQuestion(
            text=fallbacks.FALLBACK_CLARIFY_QUESTION,
            acknowledgment=fallbacks.FALLBACK_CLARIFY_ACKNOWLEDGMENT,
        )
        return replace(
            state,
            messages=_without_loading(state.messages) + (question,),
            stage=ChatStage.AWAITING_RESPONSE,
            error=action.error,
        )

    def _submit_user_response(self, state: ConversationState, action: SubmitUserResponse) -> ConversationState:
        # Extra text while voices are shown replaces the clarification
        # rather than merging with it.
        return replace(
            state,
            messages=_without_loading(state.messages) + (UserResponse(action.text),),
            clarification=action.text,
            stage=ChatStage.LOADING_VOICES,
            error=None,
        )

    def _voices_ready(self, state: ConversationState, action: VoicesReady) -> ConversationState:
        passages = tuple(action.passages)
        intro = VoicesIntro(action.intro or fallbacks.VOICES_INTRO)
        return replace(
            state,
            messages=_without_loading(state.messages) + (intro, VoiceCards(passages)),
            shown_thinkers=_union_thinkers(state.shown_thinkers, passages),
            fetched_voices=passages,
            stage=ChatStage.SHOWING_VOICES,
            error=None,
        )

    def _voices_failed(self, state: ConversationState, action: VoicesFailed) -> ConversationState:
        # No fallback cards and no auto-retry. The stage stays usable:
        # SubmitUserResponse retries, SeeAnotherFromSameSet and StartOver
        # remain available.
        return replace(
            state,
            messages=_without_loading(state.messages),
            error=action.error,
        )

    def _select_voice(self, state: ConversationState, action: SelectVoice) -> ConversationState:
        messages = _without_voice_cards(state.messages)
        return replace(
            state,
            messages=messages + (SelectedVoice(voice=action.voice, expanded=True),),
            selected_voice=action.voice,
            is_saved=False,
            stage=ChatStage.VOICE_SELECTED,
            error=None,
        )

    def _none_selected(self, state: ConversationState, action: NoneSelected) -> ConversationState:
        question = ClarifyingQuestion(
            text=fallbacks.NONE_SELECTED_QUESTION,
            acknowledgment=fallbacks.NONE_SELECTED_ACKNOWLEDGMENT,
        )
        return replace(
            state,
            messages=state.messages + (question,),
            stage=ChatStage.AWAITING_RESPONSE,
            error=None,
        )

    def _submit_reflection(self, state: ConversationState, action: SubmitReflection) -> ConversationState:
        return replace(
            state,
            messages=_without_loading(state.messages) + (UserResponse(action.text),),
            clarification=action.text,
            stage=ChatStage.GENERATING_ACKNOWLEDGMENT,
            error=None,
        )

    def _acknowledgment_ready(self, state: ConversationState, action: AcknowledgmentReady) -> ConversationState:
        return replace(
            state,
            messages=_without_loading(state.messages) + (ReflectionAcknowledgment(action.text),),
            stage=ChatStage.REFLECTION_ACKNOWLEDGED,
            error=None,
        )

    def _acknowledgment_failed(self, state: ConversationState, action: AcknowledgmentFailed) -> ConversationState:
        fallback = ReflectionAcknowledgment(fallbacks.FALLBACK_ACKNOWLEDGMENT)
        return replace(
            state,
            messages=_without_loading(state.messages) + (fallback,),
            stage=ChatStage.REFLECTION_ACKNOWLEDGED,
            error=action.error,
        )

    def _wants_more_voices(self, state: ConversationState, action: WantsMoreVoices) -> ConversationState:
        messages = list(_without_loading(state.messages))
        index = _latest_index(tuple(messages), SelectedVoice)
        if index is not None:
            messages[index] = with_expanded(messages[index], False)

        return replace(
            state,
            messages=tuple(messages),
            selected_voice=None,
            stage=ChatStage.LOADING_VOICES,
            error=None,
        )

    def _see_another_from_same_set(self, state: ConversationState,
                                   action: SeeAnotherFromSameSet) -> ConversationState:
        messages = list(_without_voice_cards(_without_loading(state.messages)))

        if state.selected_voice is not None:
            index = _latest_index(tuple(messages), SelectedVoice)
            if index is not None:
                del messages[index]

        messages.append(VoiceCards(state.fetched_voices))

        return replace(
            state,
            messages=tuple(messages),
            selected_voice=None,
            is_saved=False,
            stage=ChatStage.SHOWING_VOICES,
            error=None,
        )

    def _start_over(self, state: ConversationState, action: StartOver) -> ConversationState:
        return ConversationState(
            messages=(Greeting(get_greeting(action.user_name)),),
            stage=ChatStage.AWAITING_INPUT,
        )

    # ========================
    # Bookkeeping (stage never changes)
    # ========================

    def _set_loading(self, state: ConversationState, action: SetLoading) -> ConversationState:
        return replace(state, messages=_without_loading(state.messages) + (loading(action.text),))

    def _clear_loading(self, state: ConversationState, action: ClearLoading) -> ConversationState:
        return replace(state, messages=_without_loading(state.messages))

    def _expand_voice(self, state: ConversationState, action: ExpandVoice) -> ConversationState:
        index = _latest_index(state.messages, SelectedVoice)
        if index is None:
            logger.debug("ExpandVoice with no selected voice in transcript")
            return state

        messages = list(state.messages)
        messages[index] = with_expanded(messages[index], action.expanded)
        return replace(state, messages=tuple(messages))

    def _mark_saved(self, state: ConversationState, action: MarkSaved) -> ConversationState:
        return replace(state, is_saved=action.saved)

    def _set_journal_entry_id(self, state: ConversationState, action: SetJournalEntryId) -> ConversationState:
        return replace(state, journal_entry_id=action.entry_id)

    def _set_error(self, state: ConversationState, action: SetError) -> ConversationState:
        return replace(state, error=action.error)


def check_invariants(state: ConversationState) -> None:
    """
    Raise ValueError if a structural invariant is broken.

    Used by tests and by session restore before handing a state out.
    """
    has_voice = state.selected_voice is not None
    in_selection = state.stage in SELECTION_STAGES
    if has_voice != in_selection:
        raise ValueError(f"selected_voice={'set' if has_voice else 'None'} in stage '{state.stage.value}'")

    loading_count = sum(1 for m in state.messages if isinstance(m, Loading))
    if loading_count > 1:
        raise ValueError(f"{loading_count} loading messages in transcript")

    if len(set(state.shown_thinkers)) != len(state.shown_thinkers):
        raise ValueError("duplicate shown thinkers")
