from __future__ import annotations

from fastapi import APIRouter, Depends

from trackledger.core.ops.doctor import run_doctor
from trackledger.core.security import policy
from trackledger.core.security.principal import Principal
from trackledger.core.store import RecordStore

from .auth import current_principal
from .deps import get_record_store

router = APIRouter()


@router.get("/doctor")
def get_doctor_report(
    principal: Principal = Depends(current_principal),
    store: RecordStore = Depends(get_record_store),
) -> dict:
    policy.require_manage_users(principal)
    report = run_doctor(state_dir=store.state_dir)
    return report.model_dump()
