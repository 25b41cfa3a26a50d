from .collection import CollectionFile, CollectionSnapshot
from .records import TASK_COLLECTIONS, RecordStore, default_state_dir

__all__ = ["CollectionFile", "CollectionSnapshot", "RecordStore", "TASK_COLLECTIONS", "default_state_dir"]
