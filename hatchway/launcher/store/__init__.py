"""Pay-model store implementations."""

from hatchway.launcher.store.base import PayModelStore, PayModelStoreError
from hatchway.launcher.store.dynamodb import DynamoDBPayModelStore
from hatchway.launcher.store.local import LocalPayModelStore

__all__ = ["DynamoDBPayModelStore", "LocalPayModelStore", "PayModelStore", "PayModelStoreError"]
