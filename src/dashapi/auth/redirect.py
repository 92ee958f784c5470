"""One-shot redirect to the login screen.

When a refresh proves the session is gone, every waiting request fails at
once. Only the first failure may send the user to the login screen; the
guard swallows the rest until ``reset()`` re-arms it after a new login.
"""

from __future__ import annotations

from collections.abc import Callable

from dashapi.core.logging import get_logger

_logger = get_logger("auth.redirect")

RedirectHandler = Callable[[str], None]


class LoginRedirect:
    """Idempotent login-redirect side effect.

    Args:
        handler: Called with ``location`` the first time the guard fires.
            None only records and logs the redirect.
        location: Login location passed to the handler.
    """

    def __init__(self, handler: RedirectHandler | None = None, location: str = "/login") -> None:
        self._handler = handler
        self.location = location
        self._fired = False

    @property
    def fired(self) -> bool:
        return self._fired

    def trigger(self) -> bool:
        """Fire the redirect once.

        Returns:
            True if this call performed the redirect, False if it had already
            fired.
        """
        if self._fired:
            _logger.debug("redirect.suppressed", location=self.location)
            return False
        self._fired = True
        _logger.warning("redirect.login", location=self.location)
        if self._handler is not None:
            self._handler(self.location)
        return True

    def reset(self) -> None:
        """Re-arm the guard after a successful login."""
        self._fired = False


__all__ = ["LoginRedirect", "RedirectHandler"]
