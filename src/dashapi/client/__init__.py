"""HTTP request pipeline and the per-session service graph."""

from dashapi.client.api_client import ApiClient
from dashapi.client.executor import RequestExecutor
from dashapi.client.request import CredentialMode, RequestDescriptor

__all__ = ["ApiClient", "CredentialMode", "RequestDescriptor", "RequestExecutor"]
