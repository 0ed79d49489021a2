"""
Fixed conversation texts and fallbacks

Every external call has a deterministic fallback so the conversation can
always continue. This module is the single source of truth for those
texts, for the system-authored lines that are not generated, and for the
user-visible error strings.

Fallback Policy:
- Clarification failure -> FALLBACK_CLARIFY_* pair
- Wisdom retrieval malformed output -> FALLBACK_PASSAGES
  (stoicism, christianity, sufism, buddhism)
- Wisdom retrieval call failure -> ERROR_VOICES, no passages shown
- Acknowledgment failure -> FALLBACK_ACKNOWLEDGMENT
- Intent classification failure -> continue_reflecting (see intent_classifier),
  ERROR_INTENT shown until the next transition
"""

from typing import Tuple

from backend.contracts import Passage, Tradition


# Clarification
FALLBACK_CLARIFY_ACKNOWLEDGMENT = "That sounds meaningful."
FALLBACK_CLARIFY_QUESTION = "What feeling comes up most strongly when you think about this?"

# Offered when none of the voices resonated
NONE_SELECTED_ACKNOWLEDGMENT = "I understand."
NONE_SELECTED_QUESTION = (
    "What kind of wisdom are you looking for? "
    "Perhaps a different perspective or tradition?"
)

# Voices
VOICES_INTRO = "Here are some voices that might speak to your situation:"
MORE_VOICES_INTRO = "Here are some more voices to sit with:"

# Reflection acknowledgment
FALLBACK_ACKNOWLEDGMENT = (
    "Thank you for sharing that reflection.\n\n"
    "Would you like to hear more voices on this?"
)

# Loading indicator texts
LOADING_CLARIFY = "Thinking..."
LOADING_VOICES = "Finding wisdom..."
LOADING_MORE_VOICES = "Finding more wisdom..."
LOADING_ACKNOWLEDGMENT = "Reflecting..."
LOADING_INTENT = "Understanding..."

# User-visible error strings
ERROR_CLARIFY = "Failed to get response. Please try again."
ERROR_VOICES = "Failed to find wisdom. Please try again."
ERROR_MORE_VOICES = "Failed to find more wisdom. Please try again."
ERROR_ACKNOWLEDGMENT = "Failed to reflect on that. Please try again."
ERROR_INTENT = "I couldn't tell what you meant, so I took that as a reflection."


FALLBACK_PASSAGES: Tuple[Passage, ...] = (
    Passage(
        id='ma-med-12-4',
        tradition=Tradition.STOICISM,
        thinker='Marcus Aurelius',
        thinker_dates='121-180 AD',
        role='Stoic philosopher',
        text=(
            '"It never ceases to amaze me: we all love ourselves more than other people, '
            'but care more about their opinion than our own."'
        ),
        source='Meditations',
        context='Written during his reign as Roman Emperor, while facing war and plague.',
        reflection_question='Whose opinion are you valuing more than your own right now?',
    ),
    Passage(
        id='gal-1-10',
        tradition=Tradition.CHRISTIANITY,
        thinker='Paul the Apostle',
        role='Christian scripture',
        text='"Am I now trying to win the approval of human beings, or of God?"',
        source='Galatians 1:10',
        context='Paul wrote this letter defending his message against those who questioned his authority.',
        reflection_question='Whose approval are you seeking right now?',
    ),
    Passage(
        id='rumi-prison',
        tradition=Tradition.SUFISM,
        thinker='Rumi',
        thinker_dates='1207-1273',
        role='Sufi poet',
        text='"Why do you stay in prison when the door is so wide open?"',
        context='Rumi was a 13th-century Persian poet whose work explores themes of divine love and freedom.',
        reflection_question="What door might be open for you that you haven't walked through?",
    ),
    Passage(
        id='tnh-letting-go',
        tradition=Tradition.BUDDHISM,
        thinker='Thich Nhat Hanh',
        thinker_dates='1926-2022',
        role='Buddhist teacher',
        text='"Letting go gives us freedom, and freedom is the only condition for happiness."',
        context='Thich Nhat Hanh was a Vietnamese Buddhist monk who taught mindfulness for over 60 years.',
        reflection_question='What would you need to let go of to feel more free right now?',
    ),
)
