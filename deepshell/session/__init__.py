"""Session management module."""

from deepshell.session.manager import Session, SessionManager

__all__ = ["Session", "SessionManager"]
