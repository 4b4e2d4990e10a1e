"""Session context and the login/logout gate in front of per-user data."""

from .gate import ANONYMOUS, AuthGate, LocalIdentityProvider, Session

__all__ = ["ANONYMOUS", "AuthGate", "LocalIdentityProvider", "Session"]
