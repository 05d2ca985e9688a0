"""Reference in-process stores."""
from .memory import InMemoryDocumentStore, InMemoryNonceStore

__all__ = ["InMemoryDocumentStore", "InMemoryNonceStore"]
