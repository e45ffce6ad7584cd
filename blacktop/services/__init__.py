"""Core services shared by the API, the plugin manager and plugins."""

from .messaging_service import MessagingService, Subscription
from .storage_service import InMemoryKeyValueStore, JsonFileKeyValueStore, KeyValueStore

__all__ = [
    "MessagingService",
    "Subscription",
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
]
