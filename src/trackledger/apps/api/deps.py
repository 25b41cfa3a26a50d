from __future__ import annotations

from functools import lru_cache

from trackledger.core.scheduler.scheduler import SchedulerService
from trackledger.core.store import RecordStore
from trackledger.core.tasks.service import TaskLedger
from trackledger.core.users.service import UserDirectory


@lru_cache(maxsize=1)
def get_record_store() -> RecordStore:
    return RecordStore()


@lru_cache(maxsize=1)
def get_task_ledger() -> TaskLedger:
    return TaskLedger(store=get_record_store())


@lru_cache(maxsize=1)
def get_user_directory() -> UserDirectory:
    return UserDirectory(store=get_record_store())


@lru_cache(maxsize=1)
def get_scheduler_service() -> SchedulerService:
    return SchedulerService(state_dir=get_record_store().state_dir)


def reset_caches() -> None:
    get_record_store.cache_clear()
    get_task_ledger.cache_clear()
    get_user_directory.cache_clear()
    get_scheduler_service.cache_clear()
