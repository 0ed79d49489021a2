"""
Dialogue Manager - Reflection conversation orchestration (Imperative Shell)

Responsibilities:
- Own one ConversationState per session (ConversationSession)
- Turn user intents into state machine actions
- Issue the external call each loading stage needs and feed the result
  back as a *Ready / *Failed action
- Save to the journal (explicit save, auto-save on voice selection)
- Resume sessions from journal entries
- Discard completions that arrive after a session was closed or reset

Design principles:
- All state changes go through ConversationStateMachine.apply()
- One writer per session: actions are applied under the session lock,
  external calls run outside it
- At most one external call in flight per session
- Collaborator failures never escape: they become *Failed actions with a
  fallback, an error string and an entry in session.errors
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

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
from backend.contracts import Intent, IntentClassification, Passage
from backend.core.conversation_serializer import snapshot_to_json
from backend.core.conversation_state_machine import ConversationState, ConversationStateMachine
from backend.core.messages import UserInput, UserResponse
from backend.core.session_restore import restore_session
from backend.persistence import CreateJournalEntryParams
from backend.results import (
    IllegalTransition,
    RestoreUnavailable,
    SaveResult,
    TurnResult,
)
from backend.utils import fallbacks
from backend.utils.conversation_stages import ChatStage
from backend.utils.helpers import generate_entry_id, utc_now_iso

logger = logging.getLogger(__name__)

# Actions that abandon whatever call is in flight
INTERRUPTING_ACTIONS = (StartOver, SeeAnotherFromSameSet)

# Number of user texts sent as context with a more-voices fetch
CONTEXT_MESSAGE_COUNT = 3


def build_conversation_context(state: ConversationState) -> str:
    """
    Summary of the conversation sent with a more-voices fetch.

    The last three user texts joined with ' | ', prefixed with the
    engaged thinker when a voice is selected.
    """
    texts = [
        m.text for m in state.messages
        if isinstance(m, (UserInput, UserResponse))
    ][-CONTEXT_MESSAGE_COUNT:]
    joined = " | ".join(texts)

    if state.selected_voice is not None:
        return f"User has engaged with wisdom from {state.selected_voice.thinker}. Their reflections: {joined}"
    return joined


def _text_field(result: Any, name: str) -> str:
    value = getattr(result, name)
    if not isinstance(value, str):
        raise TypeError(f"{name} must be str, got {type(value).__name__}")
    return value


def _passages_field(result: Any) -> tuple:
    passages = tuple(result.passages)
    for passage in passages:
        if not isinstance(passage, Passage):
            raise TypeError(f"passages must be Passage, got {type(passage).__name__}")
    return passages


class ConversationSession:
    """
    Single owner of one conversation's state.

    Attributes:
        session_id: Registry key
        user_name: Name used for greetings
        errors: Recorded collaborator / save failures
            [{'context': ..., 'error': ..., 'stage': ..., 'timestamp': ...}]
    """

    def __init__(self, state_machine: ConversationStateMachine,
                 state: Optional[ConversationState] = None,
                 session_id: Optional[str] = None,
                 user_name: Optional[str] = None):
        self.session_id = session_id or generate_entry_id(short=True)
        self.user_name = user_name
        self.errors: List[Dict[str, Any]] = []

        self._machine = state_machine
        self._state = state if state is not None else state_machine.initial_state()
        self._lock = threading.Lock()
        self._closed = False
        self._epoch = 0
        self._call_in_flight = False

        # Arguments of the last voices fetch, reused by retry_voices()
        self.voices_request: Dict[str, Any] = {'conversation_context': None, 'more': False}

    @property
    def state(self) -> ConversationState:
        with self._lock:
            return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def call_in_flight(self) -> bool:
        return self._call_in_flight

    def apply(self, action: Action, epoch: Optional[int] = None) -> Optional[IllegalTransition]:
        """
        Apply an action under the session lock.

        Args:
            action: Action to apply
            epoch: Epoch the action belongs to (completions of external
                calls). None for user-initiated actions.

        Returns:
            None if applied, IllegalTransition if rejected or discarded
        """
        action_type = type(action).__name__

        with self._lock:
            stage = self._state.stage.value

            if self._closed:
                logger.warning(f"Session {self.session_id} closed, discarded {action_type}")
                return IllegalTransition(reason="Session is closed", action_type=action_type, stage=stage)

            if epoch is not None and epoch != self._epoch:
                logger.warning(
                    f"Session {self.session_id}: discarded stale {action_type} "
                    f"(epoch {epoch}, current {self._epoch})"
                )
                return IllegalTransition(reason="Stale completion", action_type=action_type, stage=stage)

            reason = self._machine.rejection_reason(self._state, action)
            if reason is not None:
                logger.warning(f"Session {self.session_id}: rejected action: {reason}")
                return IllegalTransition(reason=reason, action_type=action_type, stage=stage)

            self._state = self._machine.apply(self._state, action)

            if isinstance(action, INTERRUPTING_ACTIONS):
                self._epoch += 1
                self._call_in_flight = False

        return None

    def begin_call(self) -> Optional[int]:
        """
        Claim the single external-call slot.

        Returns:
            Current epoch, or None if closed or a call is already in flight
        """
        with self._lock:
            if self._closed or self._call_in_flight:
                return None
            self._call_in_flight = True
            return self._epoch

    def end_call(self, epoch: int) -> None:
        with self._lock:
            if epoch == self._epoch:
                self._call_in_flight = False

    def close(self) -> None:
        """Stop accepting actions. In-flight completions are discarded."""
        with self._lock:
            self._closed = True
            self._epoch += 1
            self._call_in_flight = False
        logger.info(f"Session {self.session_id} closed")

    def record_error(self, context: str, error: Exception) -> None:
        self.errors.append({
            'context': context,
            'error': str(error),
            'error_type': type(error).__name__,
            'stage': self.state.stage.value,
            'timestamp': utc_now_iso(),
        })


class DialogueManager:
    """
    Orchestrates reflection conversations.

    Stateless apart from its collaborators: every operation takes the
    ConversationSession it acts on.
    """

    def __init__(self, clarifier, wisdom_retriever, reflection_acknowledger, intent_classifier,
                 persistence=None, identity=None,
                 state_machine: Optional[ConversationStateMachine] = None):
        """
        Args:
            clarifier: Clarifier (get_clarifying_question)
            wisdom_retriever: WisdomRetriever (get_wisdom_passages)
            reflection_acknowledger: ReflectionAcknowledger (acknowledge)
            intent_classifier: IntentClassifier (classify)
            persistence: JournalPersistence, or None to disable saving
            identity: IdentityProvider, or None for an anonymous user
            state_machine: ConversationStateMachine (default: new instance)

        Raises:
            TypeError: If any collaborator is missing its method
        """
        self._validate_modules(clarifier, wisdom_retriever, reflection_acknowledger,
                               intent_classifier, persistence, identity)

        self.clarifier = clarifier
        self.wisdom_retriever = wisdom_retriever
        self.reflection_acknowledger = reflection_acknowledger
        self.intent_classifier = intent_classifier
        self.persistence = persistence
        self.identity = identity
        self.state_machine = state_machine or ConversationStateMachine()

        logger.info(
            f"Dialogue Manager initialized "
            f"(journal={'on' if persistence else 'off'}, identity={'on' if identity else 'off'})"
        )

    def _validate_modules(self, clarifier, wisdom_retriever, reflection_acknowledger,
                          intent_classifier, persistence, identity):
        """Validate module interfaces"""
        required = [
            (clarifier, 'clarifier', 'get_clarifying_question'),
            (wisdom_retriever, 'wisdom_retriever', 'get_wisdom_passages'),
            (reflection_acknowledger, 'reflection_acknowledger', 'acknowledge'),
            (intent_classifier, 'intent_classifier', 'classify'),
        ]
        if persistence is not None:
            required += [
                (persistence, 'persistence', 'save_entry'),
                (persistence, 'persistence', 'update_entry'),
            ]
        if identity is not None:
            required += [
                (identity, 'identity', 'current_user_id'),
                (identity, 'identity', 'is_authenticated'),
            ]

        for module, name, method in required:
            if not callable(getattr(module, method, None)):
                raise TypeError(f"{name} must have callable {method}() method")

    # ========================
    # Session lifecycle
    # ========================

    def start_session(self, user_name: Optional[str] = None,
                      session_id: Optional[str] = None) -> ConversationSession:
        """Open a fresh session and greet the user"""
        if user_name is None and self.identity is not None:
            user_name = getattr(self.identity, 'user_name', None)

        session = ConversationSession(self.state_machine, session_id=session_id, user_name=user_name)
        session.apply(AddGreeting(user_name=user_name))

        logger.info(f"Session {session.session_id} started")
        return session

    def resume_session(self, entry, session_id: Optional[str] = None,
                       user_name: Optional[str] = None):
        """
        Open a session from a journal entry.

        If the snapshot was taken while a call was pending, the call is
        issued again.

        Returns:
            ConversationSession, or RestoreUnavailable if the entry cannot
            be resumed
        """
        result = restore_session(entry)
        if isinstance(result, RestoreUnavailable):
            return result

        session = ConversationSession(self.state_machine, state=result.state,
                                      session_id=session_id, user_name=user_name)
        logger.info(f"Session {session.session_id} resumed from entry {getattr(entry, 'id', None)}")

        debug: Dict[str, Any] = {}
        self._run_pending_call(session, debug)
        return session

    def close_session(self, session: ConversationSession) -> None:
        session.close()

    # ========================
    # User actions
    # ========================

    def submit_text(self, session: ConversationSession, text: str):
        """
        Route free text by stage.

        awaiting_input            -> opening statement, clarification call
        awaiting_response         -> clarification answer, voices call
        showing_voices            -> refined context, voices call
        loading_voices (failed)   -> retry with refined context
        voice_selected            -> reflection, acknowledgment call
        reflection_acknowledged   -> intent classification, then either
                                     more voices or another reflection

        Returns:
            TurnResult, or IllegalTransition if text is not accepted now
        """
        before = session.state
        stage = before.stage
        debug: Dict[str, Any] = {'stage_in': stage.value}

        if stage == ChatStage.AWAITING_INPUT:
            action = SubmitUserInput(text)
        elif stage in (ChatStage.AWAITING_RESPONSE, ChatStage.SHOWING_VOICES, ChatStage.LOADING_VOICES):
            action = SubmitUserResponse(text)
        elif stage == ChatStage.VOICE_SELECTED:
            action = SubmitReflection(text)
        elif stage == ChatStage.REFLECTION_ACKNOWLEDGED:
            return self._handle_after_acknowledgment(session, text, before, debug)
        else:
            return IllegalTransition(
                reason=f"Text not accepted in stage '{stage.value}'",
                action_type="SubmitText",
                stage=stage.value,
            )

        rejected = session.apply(action)
        if rejected is not None:
            return rejected

        if isinstance(action, SubmitUserResponse):
            session.voices_request = {'conversation_context': None, 'more': False}

        self._run_pending_call(session, debug)
        return self._result(session, before, debug)

    def _handle_after_acknowledgment(self, session: ConversationSession, text: str,
                                     before: ConversationState, debug: Dict[str, Any]):
        classification = self._classify(session, text, debug)
        if classification is None:
            return IllegalTransition(
                reason="Another call is in flight",
                action_type="SubmitText",
                stage=before.stage.value,
            )
        debug['intent'] = classification.intent.value
        debug['intent_confidence'] = classification.confidence

        if classification.intent == Intent.WANTS_MORE_VOICES:
            context = build_conversation_context(session.state)
            rejected = session.apply(WantsMoreVoices())
            if rejected is not None:
                return rejected
            session.voices_request = {'conversation_context': context, 'more': True}
        else:
            rejected = session.apply(SubmitReflection(text))
            if rejected is not None:
                return rejected

        self._run_pending_call(session, debug)

        # Shown until the next transition clears it
        if 'intent_error' in debug and session.state.error is None:
            session.apply(SetError(fallbacks.ERROR_INTENT))
        return self._result(session, before, debug)

    def select_voice(self, session: ConversationSession, voice: Passage):
        """
        Choose one of the offered voices. Auto-saves for signed-in users.
        """
        before = session.state
        rejected = session.apply(SelectVoice(voice))
        if rejected is not None:
            return rejected

        debug: Dict[str, Any] = {'selected': voice.id}
        if self.persistence is not None and self.identity is not None and self.identity.is_authenticated():
            save_result = self.save(session)
            debug['auto_save'] = {'saved': save_result.saved, 'entry_id': save_result.entry_id,
                                  'error': save_result.error}

        return self._result(session, before, debug)

    def none_selected(self, session: ConversationSession):
        return self._simple(session, NoneSelected())

    def see_another_from_same_set(self, session: ConversationSession):
        return self._simple(session, SeeAnotherFromSameSet())

    def expand_voice(self, session: ConversationSession, expanded: bool):
        return self._simple(session, ExpandVoice(expanded))

    def start_over(self, session: ConversationSession, user_name: Optional[str] = None):
        if user_name is not None:
            session.user_name = user_name
        return self._simple(session, StartOver(user_name=session.user_name))

    def retry_voices(self, session: ConversationSession):
        """
        Re-issue a failed voices fetch with the same arguments.

        Valid only in loading_voices after a failure.
        """
        before = session.state
        if before.stage != ChatStage.LOADING_VOICES or before.error is None:
            return IllegalTransition(
                reason="Nothing to retry",
                action_type="RetryVoices",
                stage=before.stage.value,
            )

        debug: Dict[str, Any] = {'retry': True}
        self._run_pending_call(session, debug)
        return self._result(session, before, debug)

    def _simple(self, session: ConversationSession, action: Action):
        before = session.state
        rejected = session.apply(action)
        if rejected is not None:
            return rejected
        return self._result(session, before, {})

    # ========================
    # External calls
    # ========================

    def _run_pending_call(self, session: ConversationSession, debug: Dict[str, Any]) -> None:
        """Issue the call owed by the current stage, if any"""
        stage = session.state.stage

        if stage == ChatStage.LOADING_CLARIFY:
            self._call(
                session,
                context='clarification',
                loading_text=fallbacks.LOADING_CLARIFY,
                call=lambda s: self.clarifier.get_clarifying_question(s.user_input),
                on_success=lambda r: ClarifyingQuestionReady(
                    acknowledgment=_text_field(r, 'acknowledgment'),
                    question=_text_field(r, 'question'),
                ),
                on_failure=lambda e: ClarifyingQuestionFailed(error=fallbacks.ERROR_CLARIFY),
                debug=debug,
            )
        elif stage == ChatStage.LOADING_VOICES:
            request = session.voices_request
            more = request.get('more', False)
            conversation_context = request.get('conversation_context')
            self._call(
                session,
                context='more_voices' if more else 'voices',
                loading_text=fallbacks.LOADING_MORE_VOICES if more else fallbacks.LOADING_VOICES,
                call=lambda s: self.wisdom_retriever.get_wisdom_passages(
                    s.user_input,
                    s.clarification,
                    conversation_context=conversation_context,
                    exclude_thinkers=list(s.shown_thinkers) if more else None,
                ),
                on_success=lambda r: VoicesReady(
                    passages=_passages_field(r),
                    intro=fallbacks.MORE_VOICES_INTRO if more else fallbacks.VOICES_INTRO,
                ),
                on_failure=lambda e: VoicesFailed(
                    error=fallbacks.ERROR_MORE_VOICES if more else fallbacks.ERROR_VOICES
                ),
                debug=debug,
            )
        elif stage == ChatStage.GENERATING_ACKNOWLEDGMENT:
            self._call(
                session,
                context='acknowledgment',
                loading_text=fallbacks.LOADING_ACKNOWLEDGMENT,
                call=lambda s: self.reflection_acknowledger.acknowledge(
                    s.user_input, s.selected_voice, s.clarification
                ),
                on_success=lambda r: AcknowledgmentReady(text=_text_field(r, 'acknowledgment')),
                on_failure=lambda e: AcknowledgmentFailed(error=fallbacks.ERROR_ACKNOWLEDGMENT),
                debug=debug,
            )

    def _call(self, session: ConversationSession, context: str, loading_text: str,
              call: Callable[[ConversationState], Any],
              on_success: Callable[[Any], Action],
              on_failure: Callable[[Exception], Action],
              debug: Dict[str, Any]) -> None:
        """
        Run one external call for a session.

        The loading indicator is shown first, the call runs outside the
        session lock, and the completion is applied only if the session
        is still open and in the same epoch.
        """
        epoch = session.begin_call()
        if epoch is None:
            logger.warning(f"Session {session.session_id}: {context} call skipped (closed or busy)")
            debug.setdefault('skipped_calls', []).append(context)
            return

        try:
            session.apply(SetLoading(loading_text), epoch=epoch)
            inputs = session.state
            debug.setdefault('calls', []).append(context)

            try:
                completion = on_success(call(inputs))
            except Exception as e:
                logger.error(f"Session {session.session_id}: {context} call failed: {type(e).__name__} - {e}")
                self._fail_call(session, context, e, on_failure, epoch, debug)
                return

            rejected = session.apply(completion, epoch=epoch)
            if rejected is not None and not session.closed and session.epoch == epoch:
                logger.error(f"Session {session.session_id}: {context} result unusable: {rejected.reason}")
                self._fail_call(session, context, ValueError(rejected.reason), on_failure, epoch, debug)
        finally:
            session.end_call(epoch)

    @staticmethod
    def _fail_call(session: ConversationSession, context: str, error: Exception,
                   on_failure: Callable[[Exception], Action], epoch: int,
                   debug: Dict[str, Any]) -> None:
        session.record_error(context, error)
        debug['error'] = str(error)
        session.apply(on_failure(error), epoch=epoch)

    def _classify(self, session: ConversationSession, text: str,
                  debug: Dict[str, Any]) -> Optional[IntentClassification]:
        epoch = session.begin_call()
        if epoch is None:
            return None

        try:
            session.apply(SetLoading(fallbacks.LOADING_INTENT), epoch=epoch)
            try:
                classification = self.intent_classifier.classify(text)
                if not isinstance(classification, IntentClassification):
                    raise TypeError(f"classify() returned {type(classification).__name__}")
                return classification
            except Exception as e:
                logger.error(f"Session {session.session_id}: intent classification failed: {e}")
                session.record_error('intent', e)
                debug['intent_error'] = str(e)
                return IntentClassification(intent=Intent.CONTINUE_REFLECTING, confidence=0.5)
        finally:
            session.apply(ClearLoading(), epoch=epoch)
            session.end_call(epoch)

    # ========================
    # Journal
    # ========================

    def save(self, session: ConversationSession, notes: Optional[str] = None) -> SaveResult:
        """
        Save the conversation to the journal.

        - Anonymous user: nothing written, requires_signup=True
        - Already saved: nothing written, already_saved=True
        - First save creates an entry, later saves update it

        Returns:
            SaveResult
        """
        if self.identity is None or not self.identity.is_authenticated():
            logger.info(f"Session {session.session_id}: save requires sign-up")
            return SaveResult(saved=False, requires_signup=True)

        if self.persistence is None:
            return SaveResult(saved=False, error="Journal is not configured")

        state = session.state
        if state.is_saved and notes is None:
            return SaveResult(saved=False, entry_id=state.journal_entry_id, already_saved=True)

        user_id = self.identity.current_user_id()
        voice = state.selected_voice
        passage_fields = {
            'tradition': voice.tradition.value if voice else None,
            'thinker': voice.thinker if voice else None,
            'passage_text': voice.text if voice else None,
            'source': voice.source if voice else None,
            'context': voice.context if voice else None,
            'reflection_question': voice.reflection_question if voice else None,
        }
        conversation_data = snapshot_to_json(state)

        try:
            entry = None
            if state.journal_entry_id:
                updates = dict(passage_fields, clarification=state.clarification or None,
                               conversation_data=conversation_data)
                if notes is not None:
                    updates['notes'] = notes
                entry = self.persistence.update_entry(user_id, state.journal_entry_id, updates)
                if entry is None:
                    logger.warning(f"Journal entry {state.journal_entry_id} is gone, creating a new one")

            if entry is None:
                entry = self.persistence.save_entry(user_id, CreateJournalEntryParams(
                    user_input=state.user_input,
                    clarification=state.clarification or None,
                    notes=notes,
                    conversation_data=conversation_data,
                    **passage_fields,
                ))
        except Exception as e:
            logger.error(f"Session {session.session_id}: save failed: {type(e).__name__} - {e}")
            session.record_error('save', e)
            return SaveResult(saved=False, entry_id=state.journal_entry_id, error=str(e))

        if entry.id != state.journal_entry_id:
            session.apply(SetJournalEntryId(entry.id))
        session.apply(MarkSaved(True))

        logger.info(f"Session {session.session_id}: saved journal entry {entry.id}")
        return SaveResult(saved=True, entry_id=entry.id)

    # ========================
    # Results
    # ========================

    def _result(self, session: ConversationSession, before: ConversationState,
                debug: Dict[str, Any]) -> TurnResult:
        after = session.state
        before_ids = {m.id for m in before.messages}
        new_messages = tuple(m for m in after.messages if m.id not in before_ids)
        debug['stage_out'] = after.stage.value

        return TurnResult(
            state=after,
            new_messages=new_messages,
            error=after.error,
            debug=debug,
        )
