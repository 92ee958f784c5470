"""Immutable description of one API call."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class CredentialMode(str, Enum):
    """Whether cookies travel with a request.

    ``INCLUDE`` is the default because refresh tokens may live in an
    HttpOnly cookie.
    """

    INCLUDE = "include"
    SAME_ORIGIN = "same-origin"
    OMIT = "omit"


@dataclass(frozen=True)
class RequestDescriptor:
    """One API call, re-issued unchanged on the post-refresh retry.

    At most one body kind may be set: ``json`` for JSON payloads, ``content``
    for raw bytes, or ``files`` (with optional ``form`` fields) for multipart
    uploads. Raw and multipart bodies carry their own Content-Type.

    Attributes:
        method: HTTP method, upper-cased on construction.
        path: Path relative to the API base URL, or an absolute URL.
        headers: Caller headers; these override every default header.
        params: Query string parameters.
        json: JSON-serializable body.
        content: Raw body bytes.
        files: Multipart files, in httpx's ``files=`` format.
        form: Multipart form fields sent alongside ``files``.
        credentials: Cookie policy for this request.
        timeout: Per-attempt deadline in seconds; None uses the executor default.
    """

    method: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, Any] | None = None
    json: Any = None
    content: bytes | None = None
    files: Mapping[str, Any] | None = None
    form: Mapping[str, Any] | None = None
    credentials: CredentialMode = CredentialMode.INCLUDE
    timeout: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "credentials", CredentialMode(self.credentials))
        bodies = [b for b in (self.json, self.content, self.files) if b is not None]
        if len(bodies) > 1:
            raise ValueError("RequestDescriptor accepts only one of json, content or files")
        if self.form is not None and self.files is None:
            raise ValueError("form fields are only sent with a multipart files body")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")

    @property
    def has_raw_body(self) -> bool:
        """True for binary or multipart bodies, which set their own Content-Type."""
        return self.content is not None or self.files is not None

    @property
    def is_absolute(self) -> bool:
        return self.path.startswith(("http://", "https://"))


__all__ = ["CredentialMode", "RequestDescriptor"]
