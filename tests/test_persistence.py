"""
Test JournalPersistence and IdentityProvider
"""

import json

import pytest

from backend.identity import IdentityProvider
from backend.persistence import CreateJournalEntryParams, JournalEntry, JournalPersistence


@pytest.fixture
def journal(tmp_path):
    return JournalPersistence(str(tmp_path / "journal"))


def params(**overrides):
    values = dict(
        user_input="I feel stuck",
        clarification="Fear of failing",
        tradition="sufism",
        thinker="Rumi",
        passage_text='"Why do you stay in prison when the door is so wide open?"',
        reflection_question="What door might be open for you?",
        conversation_data={'messages': [{'type': 'greeting', 'text': 'Hi'}], 'stage': 'voice_selected'},
    )
    values.update(overrides)
    return CreateJournalEntryParams(**values)


class TestJournalPersistence:

    def test_save_and_get(self, journal):
        entry = journal.save_entry('u1', params())

        assert entry.id
        assert entry.user_id == 'u1'
        assert entry.created_at == entry.updated_at
        assert journal.get_entry('u1', entry.id) == entry

    def test_file_layout(self, journal, tmp_path):
        entry = journal.save_entry('u1', params())
        path = tmp_path / "journal" / "u1" / f"{entry.id}.json"

        assert path.exists()
        with open(path) as f:
            assert json.load(f)['thinker'] == "Rumi"

    def test_empty_strings_stored_as_none(self, journal):
        entry = journal.save_entry('u1', params(clarification="", thinker=""))
        assert entry.clarification is None
        assert entry.thinker is None

    def test_requires_user(self, journal):
        with pytest.raises(PermissionError):
            journal.save_entry(None, params())

    def test_rejects_path_in_user_id(self, journal):
        with pytest.raises(ValueError, match="Invalid user id"):
            journal.list_entries('../other')

    def test_entries_are_per_user(self, journal):
        entry = journal.save_entry('u1', params())
        assert journal.get_entry('u2', entry.id) is None
        assert journal.list_entries('u2') == []

    def test_update(self, journal):
        entry = journal.save_entry('u1', params())
        updated = journal.update_entry('u1', entry.id, {'notes': "Come back to this", 'thinker': "Laozi"})

        assert updated.notes == "Come back to this"
        assert updated.thinker == "Laozi"
        assert updated.created_at == entry.created_at
        assert journal.get_entry('u1', entry.id).notes == "Come back to this"

    def test_update_unknown_field(self, journal):
        entry = journal.save_entry('u1', params())
        with pytest.raises(ValueError, match="user_input"):
            journal.update_entry('u1', entry.id, {'user_input': "rewritten"})

    def test_update_missing_entry(self, journal):
        assert journal.update_entry('u1', 'nope', {'notes': "x"}) is None

    def test_list_newest_first(self, journal, tmp_path):
        older = journal.save_entry('u1', params(user_input="first"))
        newer = journal.save_entry('u1', params(user_input="second"))

        # Pin created_at so ordering does not depend on clock resolution
        for entry, stamp in ((older, "2026-01-01T00:00:00+00:00"), (newer, "2026-02-01T00:00:00+00:00")):
            path = tmp_path / "journal" / "u1" / f"{entry.id}.json"
            data = json.loads(path.read_text())
            data['created_at'] = stamp
            path.write_text(json.dumps(data))

        assert [e.user_input for e in journal.list_entries('u1')] == ["second", "first"]

    def test_delete(self, journal):
        entry = journal.save_entry('u1', params())
        assert journal.delete_entry('u1', entry.id) is True
        assert journal.get_entry('u1', entry.id) is None
        assert journal.delete_entry('u1', entry.id) is False

    def test_corrupted_file(self, journal, tmp_path):
        user_dir = tmp_path / "journal" / "u1"
        user_dir.mkdir(parents=True)
        (user_dir / "broken.json").write_text("{not json")

        with pytest.raises(ValueError, match="Corrupted journal entry"):
            journal.get_entry('u1', 'broken')


class TestJournalEntryJson:

    def test_missing_required(self):
        with pytest.raises(ValueError, match="user_input"):
            JournalEntry.from_json({'id': 'a', 'user_id': 'u1', 'created_at': 'x'})

    def test_unknown_keys_ignored(self):
        entry = JournalEntry.from_json({
            'id': 'a', 'user_id': 'u1', 'user_input': 'hi', 'created_at': 'x', 'mood': 'calm',
        })
        assert entry.updated_at == 'x'


class TestIdentityProvider:

    def test_anonymous(self):
        identity = IdentityProvider()
        assert identity.current_user_id() is None
        assert not identity.is_authenticated()

    def test_empty_id_is_anonymous(self):
        assert not IdentityProvider(user_id="").is_authenticated()

    def test_sign_in_and_out(self):
        identity = IdentityProvider()
        identity.sign_in('u1', 'Sam')

        assert identity.is_authenticated()
        assert identity.current_user_id() == 'u1'
        assert identity.user_name == 'Sam'

        identity.sign_out()
        assert not identity.is_authenticated()

    def test_sign_in_requires_id(self):
        with pytest.raises(ValueError):
            IdentityProvider().sign_in('')
