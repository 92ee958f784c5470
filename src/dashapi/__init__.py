"""dashapi - resilient async API client for the admin dashboard backend."""

__version__ = "0.4.0"

from dashapi.auth.token_store import TokenPair
from dashapi.client.api_client import ApiClient
from dashapi.client.request import CredentialMode, RequestDescriptor
from dashapi.core.envelope import Envelope, normalize
from dashapi.core.errors import ClassifiedError, ErrorCode

__all__ = [
    "ApiClient",
    "ClassifiedError",
    "CredentialMode",
    "Envelope",
    "ErrorCode",
    "RequestDescriptor",
    "TokenPair",
    "__version__",
    "normalize",
]
