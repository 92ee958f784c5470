"""Session tokens, the login redirect guard and single-flight refresh."""

from dashapi.auth.redirect import LoginRedirect
from dashapi.auth.refresh import RefreshCoordinator, RefreshFailure, RefreshState
from dashapi.auth.token_store import InMemoryTokenStore, JsonFileTokenStore, TokenPair, TokenStore

__all__ = [
    "InMemoryTokenStore",
    "JsonFileTokenStore",
    "LoginRedirect",
    "RefreshCoordinator",
    "RefreshFailure",
    "RefreshState",
    "TokenPair",
    "TokenStore",
]
