"""
Identity collaborator.

Answers one question for the orchestrating layer: who is the current
user, if anyone. A signed-in user gets remote saves and auto-save on voice
selection. An anonymous user is prompted to sign up instead.
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


class IdentityProvider:
    """
    Holds the identity of the user driving a session.

    Args:
        user_id: Authenticated user id, or None for an anonymous user
        user_name: Display name used in the greeting
    """

    def __init__(self, user_id: Optional[str] = None, user_name: Optional[str] = None):
        self._user_id = user_id or None
        self.user_name = user_name

    def current_user_id(self) -> Optional[str]:
        return self._user_id

    def is_authenticated(self) -> bool:
        return self._user_id is not None

    def sign_in(self, user_id: str, user_name: Optional[str] = None) -> None:
        if not user_id:
            raise ValueError("user_id must be non-empty")
        self._user_id = user_id
        if user_name:
            self.user_name = user_name
        logger.info(f"User signed in: {user_id}")

    def sign_out(self) -> None:
        logger.info(f"User signed out: {self._user_id}")
        self._user_id = None
