"""
Session Restore - Rebuild a live conversation from a journal entry

Takes the conversation_data snapshot stored on a journal entry and
produces a fresh ConversationState that can continue where the user left
off. Entries without usable conversation data are reported as
RestoreUnavailable. The core never reconstructs a transcript from the
entry's denormalized columns.
"""

import logging
import time
from dataclasses import replace
from typing import Any

from backend.core.conversation_serializer import ConversationSnapshot
from backend.core.conversation_state_machine import ConversationState, check_invariants
from backend.core.messages import VoiceCards
from backend.results import RestoredSession, RestoreUnavailable, RestoreResult

logger = logging.getLogger(__name__)


def restore_session(entry: Any) -> RestoreResult:
    """
    Rehydrate a session from a journal entry.

    Args:
        entry: Object with id and conversation_data attributes
            (JournalEntry, or anything shaped like it)

    Returns:
        RestoredSession with a live state, or RestoreUnavailable(reason)

    Notes:
        - Messages get fresh ids; selected voices come back expanded
        - is_saved is False and error is None
        - journal_entry_id is the entry's id, so the next save updates it
    """
    entry_id = getattr(entry, 'id', None)
    data = getattr(entry, 'conversation_data', None)

    if not data:
        logger.info(f"Entry {entry_id} has no conversation data, cannot restore")
        return RestoreUnavailable(reason="Entry has no conversation data")

    try:
        snapshot = ConversationSnapshot.from_json(data)
    except ValueError as e:
        logger.warning(f"Entry {entry_id} conversation data is unusable: {e}")
        return RestoreUnavailable(reason=f"Conversation data could not be read: {e}")

    restored_at = int(time.time() * 1000)
    messages = tuple(
        replace(stored.message, id=f"restored-{index}-{restored_at}")
        for index, stored in enumerate(snapshot.messages)
    )

    if snapshot.fetched_voices:
        fetched_voices = snapshot.fetched_voices
    else:
        last_cards = next((m for m in reversed(messages) if isinstance(m, VoiceCards)), None)
        fetched_voices = last_cards.voices if last_cards else ()

    state = ConversationState(
        messages=messages,
        stage=snapshot.stage,
        user_input=snapshot.user_input,
        clarification=snapshot.clarification,
        selected_voice=snapshot.selected_voice,
        shown_thinkers=snapshot.shown_thinkers,
        is_saved=False,
        journal_entry_id=entry_id,
        error=None,
        fetched_voices=fetched_voices,
    )

    try:
        check_invariants(state)
    except ValueError as e:
        logger.warning(f"Entry {entry_id} snapshot is inconsistent: {e}")
        return RestoreUnavailable(reason=f"Conversation data is inconsistent: {e}")

    logger.info(f"Restored entry {entry_id}: {len(messages)} messages, stage {state.stage.value}")
    return RestoredSession(state=state)


def can_resume(entry: Any) -> bool:
    """
    Whether a journal entry offers "continue this conversation".

    True iff the entry has conversation data with at least one message
    and no voice was chosen when it was saved.
    """
    if getattr(entry, 'thinker', None):
        return False

    data = getattr(entry, 'conversation_data', None)
    if not isinstance(data, dict):
        return False

    messages = data.get('messages')
    return isinstance(messages, list) and len(messages) > 0
