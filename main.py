"""
Console Harness for the reflection DialogueManager

Simple console loop to walk a conversation end to end before going
through the Flask API.

Commands:
    /pick N     choose voice N from the cards on screen
    /none       none of the voices resonated
    /same       see another voice from the same set
    /retry      retry a failed voices fetch
    /collapse   collapse the selected voice (/expand to reopen)
    /save       save to the journal (needs PANIA_USER_ID)
    /restart    start over
    /quit       leave
"""

import logging
import os
import sys
import textwrap

from backend.config import Settings
from backend.core.clarifier import Clarifier
from backend.core.dialogue_manager import DialogueManager
from backend.core.intent_classifier import IntentClassifier
from backend.core.messages import (
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
from backend.core.reflection_acknowledger import ReflectionAcknowledger
from backend.core.wisdom_retriever import WisdomRetriever
from backend.identity import IdentityProvider
from backend.persistence import JournalPersistence
from backend.results import IllegalTransition
from backend.utils.hf_client import HuggingFaceClient

logging.basicConfig(level=Settings.LOG_LEVEL, format=Settings.LOG_FORMAT)
logger = logging.getLogger(__name__)

EXIT_COMMANDS = {"/quit", "/exit", "quit", "exit"}


def print_separator(char="=", length=60):
    print(char * length)


def render_message(message):
    """Print one transcript message"""
    if isinstance(message, (Greeting, VoicesIntro)):
        print(f"\nPania: {message.text}")
    elif isinstance(message, ClarifyingQuestion):
        if message.acknowledgment:
            print(f"\nPania: {message.acknowledgment}")
        print(f"Pania: {message.text}")
    elif isinstance(message, ReflectionAcknowledgment):
        print(f"\nPania: {message.text}")
    elif isinstance(message, (UserInput, UserResponse)):
        pass
    elif isinstance(message, VoiceCards):
        for index, voice in enumerate(message.voices, start=1):
            print(f"\n  [{index}] {voice.thinker} ({voice.tradition.value})")
            print(textwrap.indent(textwrap.fill(voice.text, 70), "      "))
    elif isinstance(message, SelectedVoice):
        voice = message.voice
        print(f"\n  {voice.thinker} - {voice.role}")
        if message.expanded:
            print(textwrap.indent(textwrap.fill(voice.text, 70), "    "))
            print(textwrap.indent(textwrap.fill(voice.context, 70), "    "))
            print(f"\n    {voice.reflection_question}")
    elif isinstance(message, Loading):
        pass
    else:
        raise TypeError(f"Unknown message variant: {type(message).__name__}")


def show_result(result):
    if isinstance(result, IllegalTransition):
        print(f"\n(not now: {result.reason})")
        return
    for message in result.new_messages:
        render_message(message)
    if result.error:
        print(f"\n[!] {result.error}")


def main():
    """Run console harness"""
    print_separator()
    print("PANIA - CONSOLE HARNESS")
    print_separator()
    print("\nInitializing modules (this may take 30 seconds)...")

    try:
        hf_client = HuggingFaceClient(
            model_name=Settings.MODEL_NAME,
            load_in_4bit=Settings.LOAD_IN_4BIT,
            device=Settings.DEVICE
        )

        identity = IdentityProvider(
            user_id=os.getenv('PANIA_USER_ID'),
            user_name=Settings.DEFAULT_USER_NAME
        )

        dm = DialogueManager(
            clarifier=Clarifier(hf_client, temperature=Settings.CLARIFY_TEMPERATURE),
            wisdom_retriever=WisdomRetriever(hf_client, temperature=Settings.WISDOM_TEMPERATURE),
            reflection_acknowledger=ReflectionAcknowledger(hf_client,
                                                           temperature=Settings.ACKNOWLEDGMENT_TEMPERATURE),
            intent_classifier=IntentClassifier(hf_client, temperature=Settings.INTENT_TEMPERATURE),
            persistence=JournalPersistence(Settings.JOURNAL_DIR),
            identity=identity
        )

        print("\nModules initialized successfully!")

    except Exception as e:
        print(f"\nFailed to initialize: {e}")
        import traceback
        traceback.print_exc()
        return 1

    session = dm.start_session()
    for message in session.state.messages:
        render_message(message)

    while True:
        try:
            text = input("\n> ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nInterrupted")
            break

        if not text:
            continue

        if text.lower() in EXIT_COMMANDS:
            break

        try:
            if text.startswith("/pick"):
                voices = session.state.fetched_voices
                try:
                    index = int(text.split()[1]) - 1
                    voice = voices[index]
                except (IndexError, ValueError):
                    print(f"Pick a number between 1 and {len(voices)}")
                    continue
                show_result(dm.select_voice(session, voice))
            elif text == "/none":
                show_result(dm.none_selected(session))
            elif text == "/same":
                show_result(dm.see_another_from_same_set(session))
            elif text == "/retry":
                show_result(dm.retry_voices(session))
            elif text in ("/collapse", "/expand"):
                dm.expand_voice(session, text == "/expand")
                selected = session.state.latest(SelectedVoice)
                if selected is not None:
                    render_message(selected)
            elif text == "/save":
                result = dm.save(session)
                if result.requires_signup:
                    print("\nSign in (set PANIA_USER_ID) to save your reflections.")
                elif result.error:
                    print(f"\n[!] Save failed: {result.error}")
                else:
                    print(f"\nSaved ({result.entry_id}).")
            elif text == "/restart":
                show_result(dm.start_over(session))
            else:
                show_result(dm.submit_text(session, text))

        except Exception as e:
            print(f"\nERROR: {e}")
            import traceback
            traceback.print_exc()

    dm.close_session(session)
    print_separator()
    print("Session ended")
    print_separator()
    return 0


if __name__ == '__main__':
    sys.exit(main())
