"""
Semantic contracts for the guided reflection system.

This module defines immutable data structures that serve as contracts
between the conversation core and its external collaborators. These are
NOT services - they define shape and semantics, plus the JSON mapping
used when they are persisted inside a conversation snapshot.

Design principles:
- Frozen dataclasses (immutable after creation)
- No dependencies on other backend modules
- JSON keys match the persisted journal format (camelCase)

Contents:
- Tradition: The six wisdom traditions a passage can come from
- Passage: One retrieved piece of wisdom with attribution
- ClarifyResponse: Output of the clarification collaborator
- WisdomResponse: Output of the wisdom retrieval collaborator
- ReflectionAcknowledgmentResponse: Output of the acknowledgment collaborator
- Intent / IntentClassification: Output of the intent classifier

Usage:
    from backend.contracts import Passage, Tradition
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class Tradition(str, Enum):
    """Wisdom traditions a passage can be drawn from"""
    STOICISM = "stoicism"
    CHRISTIANITY = "christianity"
    BUDDHISM = "buddhism"
    SUFISM = "sufism"
    TAOISM = "taoism"
    JUDAISM = "judaism"


VALID_TRADITIONS = {tradition.value for tradition in Tradition}


@dataclass(frozen=True)
class Passage:
    """
    One retrieved piece of wisdom ("voice").

    Passages are produced entirely by the wisdom retrieval collaborator
    and never change afterwards. The conversation core only moves them
    around: into voice cards, into the selected voice, into snapshots.

    Attributes:
        id: Passage identifier (e.g., 'ma-med-12-4')
        tradition: Tradition the passage belongs to
        thinker: Attribution name (e.g., 'Marcus Aurelius').
            Used for the shown-thinkers exclusion list.
        role: Thinker's role or description (e.g., 'Stoic philosopher')
        text: The quoted passage
        context: Short historical context about the thinker or text
        reflection_question: Question tying the passage to the user's situation
        thinker_dates: Life dates, if known (e.g., '121-180 AD')
        source: Source citation, if known (e.g., 'Meditations, Book 4')

    Examples:
        >>> p = Passage(
        ...     id='rumi-prison',
        ...     tradition=Tradition.SUFISM,
        ...     thinker='Rumi',
        ...     role='Sufi poet',
        ...     text='"Why do you stay in prison when the door is so wide open?"',
        ...     context='13th-century Persian poet.',
        ...     reflection_question='What door might be open for you?'
        ... )
        >>> p.to_json()['reflectionQuestion']
        'What door might be open for you?'
    """
    id: str
    tradition: Tradition
    thinker: str
    role: str
    text: str
    context: str
    reflection_question: str
    thinker_dates: Optional[str] = None
    source: Optional[str] = None

    REQUIRED_KEYS = ('id', 'tradition', 'thinker', 'role', 'text', 'context', 'reflectionQuestion')

    def to_json(self) -> Dict[str, Any]:
        """
        Serialize to the persisted JSON shape.

        Optional fields are omitted when unset, matching rows written
        by the mobile client.
        """
        data = {
            'id': self.id,
            'tradition': self.tradition.value,
            'thinker': self.thinker,
            'role': self.role,
            'text': self.text,
            'context': self.context,
            'reflectionQuestion': self.reflection_question,
        }
        if self.thinker_dates is not None:
            data['thinkerDates'] = self.thinker_dates
        if self.source is not None:
            data['source'] = self.source
        return data

    @staticmethod
    def from_json(data: Dict[str, Any]) -> "Passage":
        """
        Deserialize from the persisted JSON shape.

        Args:
            data: Passage dict (camelCase keys)

        Returns:
            Passage

        Raises:
            ValueError: If a required key is missing or tradition is unknown
        """
        if not isinstance(data, dict):
            raise ValueError(f"passage must be dict, got {type(data).__name__}")

        missing = [key for key in Passage.REQUIRED_KEYS if key not in data]
        if missing:
            raise ValueError(f"passage missing required keys: {missing}")

        tradition = data['tradition']
        if tradition not in VALID_TRADITIONS:
            raise ValueError(f"Unknown tradition: {tradition!r}")

        return Passage(
            id=str(data['id']),
            tradition=Tradition(tradition),
            thinker=data['thinker'],
            role=data['role'],
            text=data['text'],
            context=data['context'],
            reflection_question=data['reflectionQuestion'],
            thinker_dates=data.get('thinkerDates'),
            source=data.get('source'),
        )


@dataclass(frozen=True)
class ClarifyResponse:
    """Acknowledgment plus one clarifying question"""
    acknowledgment: str
    question: str


@dataclass(frozen=True)
class WisdomResponse:
    """
    Batch of candidate passages.

    Target is 4 passages spanning at least 3 distinct traditions.
    Tuple (not list) to keep the response immutable.
    """
    passages: Tuple[Passage, ...]


@dataclass(frozen=True)
class ReflectionAcknowledgmentResponse:
    """Warm response to the user's reflection on a selected voice"""
    acknowledgment: str


class Intent(str, Enum):
    """Two-way classification of text sent after an acknowledgment"""
    WANTS_MORE_VOICES = "wants_more_voices"
    CONTINUE_REFLECTING = "continue_reflecting"


@dataclass(frozen=True)
class IntentClassification:
    """
    Intent classifier output.

    Attributes:
        intent: Top label. Always acted on, regardless of confidence.
        confidence: Score 0.0-1.0, carried for logging only.
    """
    intent: Intent
    confidence: float
