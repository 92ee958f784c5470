"""Error taxonomy, exception types and classification.

Re-exports all public symbols.
"""

from dashapi.core.errors.codes import (
    RETRYABLE_CLIENT_STATUSES,
    STATUS_CODE_MAP,
    ErrorCode,
    code_for_status,
)
from dashapi.core.errors.models import (
    ClassifiedError,
    ConfigurationError,
    DashApiError,
)
from dashapi.core.errors.classifier import (
    DEFAULT_MESSAGES,
    FALLBACK_ERROR_BODY,
    ErrorClassifier,
    parse_error_body,
)

__all__ = [
    "ErrorCode",
    "RETRYABLE_CLIENT_STATUSES",
    "STATUS_CODE_MAP",
    "code_for_status",
    "ClassifiedError",
    "ConfigurationError",
    "DashApiError",
    "DEFAULT_MESSAGES",
    "ErrorClassifier",
    "FALLBACK_ERROR_BODY",
    "parse_error_body",
]
