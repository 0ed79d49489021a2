"""
Flask JSON API for the guided reflection conversation

Thin UI layer: maps HTTP requests onto DialogueManager operations and
renders conversation state as JSON. The caller identifies the user with
the X-User-Id header (absent = anonymous).
"""

import logging
import threading
from typing import Any, Dict, Optional

from flask import Flask, current_app, jsonify, request

from backend.config import Settings
from backend.contracts import Passage
from backend.core.clarifier import Clarifier
from backend.core.conversation_serializer import message_to_json
from backend.core.conversation_state_machine import ConversationState
from backend.core.dialogue_manager import ConversationSession, DialogueManager
from backend.core.intent_classifier import IntentClassifier
from backend.core.messages import ChatMessage, Loading, SelectedVoice
from backend.core.reflection_acknowledger import ReflectionAcknowledger
from backend.core.session_restore import can_resume
from backend.core.wisdom_retriever import WisdomRetriever
from backend.identity import IdentityProvider
from backend.persistence import JournalEntry, JournalPersistence
from backend.results import IllegalTransition, RestoreUnavailable
from backend.utils import tradition_analytics

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Live sessions by id. Explicitly owned by the app, never global."""

    def __init__(self):
        self._sessions: Dict[str, ConversationSession] = {}
        self._lock = threading.Lock()

    def add(self, session: ConversationSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = session

    def get(self, session_id: str) -> Optional[ConversationSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Optional[ConversationSession]:
        with self._lock:
            return self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


def initialize_collaborators(settings=Settings) -> Dict[str, Any]:
    """Load the model once and build the LLM collaborators on it"""
    # Imported here so the API can be built around mock collaborators
    # without loading torch
    from backend.utils.hf_client import HuggingFaceClient

    logger.info("Initializing HuggingFace model (this takes ~30 seconds)...")
    hf_client = HuggingFaceClient(
        model_name=settings.MODEL_NAME,
        load_in_4bit=settings.LOAD_IN_4BIT,
        device=settings.DEVICE
    )

    return {
        'clarifier': Clarifier(hf_client, temperature=settings.CLARIFY_TEMPERATURE,
                               max_tokens=settings.CLARIFY_MAX_TOKENS),
        'wisdom_retriever': WisdomRetriever(hf_client, temperature=settings.WISDOM_TEMPERATURE,
                                            max_tokens=settings.WISDOM_MAX_TOKENS),
        'reflection_acknowledger': ReflectionAcknowledger(hf_client,
                                                          temperature=settings.ACKNOWLEDGMENT_TEMPERATURE,
                                                          max_tokens=settings.ACKNOWLEDGMENT_MAX_TOKENS),
        'intent_classifier': IntentClassifier(hf_client, temperature=settings.INTENT_TEMPERATURE,
                                              max_tokens=settings.INTENT_MAX_TOKENS),
    }


# ========================
# JSON views
# ========================

def message_view(message: ChatMessage) -> Dict[str, Any]:
    if isinstance(message, Loading):
        return {'id': message.id, 'type': message.type, 'text': message.text}

    view = message_to_json(message, timestamp='')
    view.pop('timestamp', None)
    view['id'] = message.id
    if isinstance(message, SelectedVoice):
        view['expanded'] = message.expanded
    return view


def state_view(session_id: str, state: ConversationState) -> Dict[str, Any]:
    return {
        'session_id': session_id,
        'stage': state.stage.value,
        'messages': [message_view(m) for m in state.messages],
        'user_input': state.user_input,
        'clarification': state.clarification,
        'selected_voice': state.selected_voice.to_json() if state.selected_voice else None,
        'shown_thinkers': list(state.shown_thinkers),
        'is_saved': state.is_saved,
        'journal_entry_id': state.journal_entry_id,
        'error': state.error,
    }


def entry_view(entry: JournalEntry) -> Dict[str, Any]:
    view = entry.to_json()
    view['can_resume'] = can_resume(entry)
    return view


# ========================
# App factory
# ========================

def create_app(collaborators: Optional[Dict[str, Any]] = None,
               persistence: Optional[JournalPersistence] = None,
               settings=Settings) -> Flask:
    """
    Build the Flask app.

    Args:
        collaborators: {'clarifier', 'wisdom_retriever',
            'reflection_acknowledger', 'intent_classifier'}. Loaded from
            the model when omitted.
        persistence: JournalPersistence (default: settings.JOURNAL_DIR)
        settings: Settings class

    Returns:
        Flask app with 'SESSIONS', 'COLLABORATORS' and 'JOURNAL' in config
    """
    app = Flask(__name__)
    app.config['SESSIONS'] = SessionRegistry()
    app.config['COLLABORATORS'] = collaborators or initialize_collaborators(settings)
    app.config['JOURNAL'] = persistence or JournalPersistence(settings.JOURNAL_DIR)
    app.config['USER_ID_HEADER'] = settings.USER_ID_HEADER
    app.config['USER_NAME_HEADER'] = settings.USER_NAME_HEADER

    register_routes(app)
    logger.info("Reflection API created")
    return app


def _identity() -> IdentityProvider:
    return IdentityProvider(
        user_id=request.headers.get(current_app.config['USER_ID_HEADER']),
        user_name=request.headers.get(current_app.config['USER_NAME_HEADER']),
    )


def _manager(identity: IdentityProvider) -> DialogueManager:
    return DialogueManager(
        persistence=current_app.config['JOURNAL'],
        identity=identity,
        **current_app.config['COLLABORATORS']
    )


def _session_or_404(session_id: str):
    session = current_app.config['SESSIONS'].get(session_id)
    if session is None:
        return None, (jsonify({'success': False, 'error': 'Session not found'}), 404)
    return session, None


def _turn_response(session: ConversationSession, result):
    if isinstance(result, IllegalTransition):
        return jsonify({
            'success': False,
            'error': result.reason,
            'action': result.action_type,
            'stage': result.stage,
        }), 409

    return jsonify({
        'success': True,
        'state': state_view(session.session_id, result.state),
        'new_messages': [message_view(m) for m in result.new_messages],
    })


def _require_user(identity: IdentityProvider):
    if not identity.is_authenticated():
        return jsonify({'success': False, 'error': 'User not authenticated', 'requires_signup': True}), 401
    return None


def register_routes(app: Flask) -> None:

    @app.route('/api/sessions', methods=['POST'])
    def start_session():
        """Open a new session and greet the user"""
        identity = _identity()
        data = request.get_json(silent=True) or {}
        user_name = data.get('user_name') or identity.user_name

        session = _manager(identity).start_session(user_name=user_name)
        current_app.config['SESSIONS'].add(session)

        return jsonify({'success': True, 'state': state_view(session.session_id, session.state)}), 201

    @app.route('/api/sessions/<session_id>', methods=['GET'])
    def get_session(session_id):
        session, error = _session_or_404(session_id)
        if error:
            return error
        return jsonify({'success': True, 'state': state_view(session_id, session.state)})

    @app.route('/api/sessions/<session_id>', methods=['DELETE'])
    def close_session(session_id):
        session = current_app.config['SESSIONS'].remove(session_id)
        if session is None:
            return jsonify({'success': False, 'error': 'Session not found'}), 404
        session.close()
        return jsonify({'success': True})

    @app.route('/api/sessions/<session_id>/messages', methods=['POST'])
    def submit_text(session_id):
        session, error = _session_or_404(session_id)
        if error:
            return error

        data = request.get_json(silent=True) or {}
        text = (data.get('text') or '').strip()
        if not text:
            return jsonify({'success': False, 'error': 'text is required'}), 400

        try:
            result = _manager(_identity()).submit_text(session, text)
        except Exception as e:
            logger.error(f"Error processing message: {e}")
            return jsonify({'success': False, 'error': str(e)}), 500
        return _turn_response(session, result)

    @app.route('/api/sessions/<session_id>/select', methods=['POST'])
    def select_voice(session_id):
        session, error = _session_or_404(session_id)
        if error:
            return error

        data = request.get_json(silent=True) or {}
        voice_id = data.get('voice_id')
        voice: Optional[Passage] = next(
            (p for p in session.state.fetched_voices if p.id == voice_id), None
        )
        if voice is None:
            return jsonify({'success': False, 'error': f'Unknown voice: {voice_id}'}), 400

        result = _manager(_identity()).select_voice(session, voice)
        return _turn_response(session, result)

    @app.route('/api/sessions/<session_id>/none-selected', methods=['POST'])
    def none_selected(session_id):
        session, error = _session_or_404(session_id)
        if error:
            return error
        return _turn_response(session, _manager(_identity()).none_selected(session))

    @app.route('/api/sessions/<session_id>/same-set', methods=['POST'])
    def see_another_from_same_set(session_id):
        session, error = _session_or_404(session_id)
        if error:
            return error
        return _turn_response(session, _manager(_identity()).see_another_from_same_set(session))

    @app.route('/api/sessions/<session_id>/expand', methods=['POST'])
    def expand_voice(session_id):
        session, error = _session_or_404(session_id)
        if error:
            return error
        data = request.get_json(silent=True) or {}
        expanded = bool(data.get('expanded', True))
        return _turn_response(session, _manager(_identity()).expand_voice(session, expanded))

    @app.route('/api/sessions/<session_id>/retry', methods=['POST'])
    def retry_voices(session_id):
        session, error = _session_or_404(session_id)
        if error:
            return error
        return _turn_response(session, _manager(_identity()).retry_voices(session))

    @app.route('/api/sessions/<session_id>/start-over', methods=['POST'])
    def start_over(session_id):
        session, error = _session_or_404(session_id)
        if error:
            return error
        return _turn_response(session, _manager(_identity()).start_over(session))

    @app.route('/api/sessions/<session_id>/save', methods=['POST'])
    def save(session_id):
        session, error = _session_or_404(session_id)
        if error:
            return error

        data = request.get_json(silent=True) or {}
        result = _manager(_identity()).save(session, notes=data.get('notes'))

        if result.requires_signup:
            return jsonify({'success': False, 'requires_signup': True}), 401
        if result.error:
            return jsonify({'success': False, 'error': result.error}), 500

        return jsonify({
            'success': True,
            'saved': result.saved,
            'already_saved': result.already_saved,
            'entry_id': result.entry_id,
        })

    # ========================
    # Journal
    # ========================

    @app.route('/api/journal', methods=['GET'])
    def list_entries():
        identity = _identity()
        denied = _require_user(identity)
        if denied:
            return denied

        entries = current_app.config['JOURNAL'].list_entries(identity.current_user_id())
        return jsonify({'success': True, 'entries': [entry_view(e) for e in entries]})

    @app.route('/api/journal/analytics', methods=['GET'])
    def journal_analytics():
        identity = _identity()
        denied = _require_user(identity)
        if denied:
            return denied

        entries = current_app.config['JOURNAL'].list_entries(identity.current_user_id())
        return jsonify({
            'success': True,
            'counts': tradition_analytics.get_tradition_counts(entries),
            'most_engaged': tradition_analytics.get_most_engaged_tradition(entries),
            'total_voices': tradition_analytics.get_total_voices_count(entries),
            'sorted': tradition_analytics.get_traditions_sorted_by_count(entries),
            'per_day': tradition_analytics.get_traditions_per_day(entries),
        })

    @app.route('/api/journal/<entry_id>', methods=['GET'])
    def get_entry(entry_id):
        identity = _identity()
        denied = _require_user(identity)
        if denied:
            return denied

        entry = current_app.config['JOURNAL'].get_entry(identity.current_user_id(), entry_id)
        if entry is None:
            return jsonify({'success': False, 'error': 'Entry not found'}), 404
        return jsonify({'success': True, 'entry': entry_view(entry)})

    @app.route('/api/journal/<entry_id>', methods=['DELETE'])
    def delete_entry(entry_id):
        identity = _identity()
        denied = _require_user(identity)
        if denied:
            return denied

        deleted = current_app.config['JOURNAL'].delete_entry(identity.current_user_id(), entry_id)
        if not deleted:
            return jsonify({'success': False, 'error': 'Entry not found'}), 404
        return jsonify({'success': True})

    @app.route('/api/journal/<entry_id>/resume', methods=['POST'])
    def resume_entry(entry_id):
        identity = _identity()
        denied = _require_user(identity)
        if denied:
            return denied

        entry = current_app.config['JOURNAL'].get_entry(identity.current_user_id(), entry_id)
        if entry is None:
            return jsonify({'success': False, 'error': 'Entry not found'}), 404

        result = _manager(identity).resume_session(entry, user_name=identity.user_name)
        if isinstance(result, RestoreUnavailable):
            return jsonify({'success': False, 'error': result.reason, 'replay_only': True}), 409

        current_app.config['SESSIONS'].add(result)
        return jsonify({'success': True, 'state': state_view(result.session_id, result.state)}), 201


if __name__ == '__main__':
    logging.basicConfig(level=Settings.LOG_LEVEL, format=Settings.LOG_FORMAT)

    app = create_app()

    print("\n" + "=" * 60)
    print("PANIA REFLECTION API")
    print("=" * 60)
    print(f"\nServer starting on http://{Settings.SERVICE_HOST}:{Settings.SERVICE_PORT}")
    print("\nPress Ctrl+C to stop the server")
    print("=" * 60 + "\n")

    app.run(host=Settings.SERVICE_HOST, port=Settings.SERVICE_PORT, debug=False)
