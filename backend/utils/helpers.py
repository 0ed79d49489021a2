"""
Utility helpers for the guided reflection system

Simple utility functions for ID, timestamp and greeting generation.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Optional


GREETING = "Hi"


def generate_entry_id(short=False):
    """
    Generate unique journal entry identifier

    Args:
        short (bool): If True, return 8-char hex. If False, return full UUID.

    Returns:
        str: Entry ID

    Examples:
        >>> generate_entry_id(short=True)
        'a3f7e2b9'

        >>> generate_entry_id()
        'a3f7e2b9c1d2e3f4a5b6c7d8e9f0a1b2'
    """
    full_id = uuid.uuid4().hex
    return full_id[:8] if short else full_id


def generate_message_id():
    """
    Generate a message identifier unique within a session

    Format: {epoch_millis}-{9 random hex chars}

    Returns:
        str: Message ID

    Examples:
        >>> generate_message_id()
        '1760871300123-3f9a1c2b7'
    """
    millis = int(time.time() * 1000)
    return f"{millis}-{uuid.uuid4().hex[:9]}"


def utc_now_iso():
    """Current UTC time as ISO 8601 string"""
    return datetime.now(timezone.utc).isoformat()


def get_greeting(user_name: Optional[str] = None) -> str:
    """
    Build the opening greeting

    Examples:
        >>> get_greeting()
        'Hi'

        >>> get_greeting('Sam')
        'Hi, Sam'
    """
    return f"{GREETING}, {user_name}" if user_name else GREETING
