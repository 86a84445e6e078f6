from traitcore.session.session import Session, SessionManager

__all__ = ["Session", "SessionManager"]
