"""SharePoint list and attachment adapters (the secondary system of record)."""

from .attachments import (
    AttachmentDescriptor,
    AttachmentStore,
    GraphAttachmentStrategy,
    RestAttachmentStrategy,
)
from .auth import StaticTokenProvider, TokenProvider
from .lists import SharePointListClient
from .retry import RetryPolicy

__all__ = [
    "AttachmentDescriptor",
    "AttachmentStore",
    "GraphAttachmentStrategy",
    "RestAttachmentStrategy",
    "RetryPolicy",
    "SharePointListClient",
    "StaticTokenProvider",
    "TokenProvider",
]
