"""Progression engine errors.

Validation failures subclass ValueError and missing entities subclass
LookupError; the API layer maps them to 400 and 404 respectively.
"""

from __future__ import annotations


class InvalidActionError(ValueError):
    """Raised when an action fails validation, before any state is touched."""


class ProfileNotFoundError(LookupError):
    """Raised when a user profile is required but does not exist."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"Profile not found: {user_id}")
        self.user_id = user_id


class TemplateNotFoundError(LookupError):
    """Raised when a challenge template id is not in the catalog."""

    def __init__(self, template_id: str) -> None:
        super().__init__(f"Challenge template not found: {template_id}")
        self.template_id = template_id


class AwardNotFoundError(LookupError):
    """Raised when an undo targets a source that holds no live award."""

    def __init__(self, source: str, source_id: str) -> None:
        super().__init__(f"No award to revoke for {source}:{source_id}")
        self.source = source
        self.source_id = source_id


class FocusSessionNotFoundError(LookupError):
    """Raised when a focus session id is unknown for the user."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Focus session not found: {session_id}")
        self.session_id = session_id
