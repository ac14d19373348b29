from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from journeyflow.api.deps import get_runtime, snapshot
from journeyflow.services.runtime import JourneyRuntime

router = APIRouter()


@router.get("/users")
async def list_users(runtime: JourneyRuntime = Depends(get_runtime)):
    states = await runtime.engine.list_states()
    return snapshot([state.model_dump(mode="json", by_alias=True) for state in states], "No User Found")


@router.get("/users/{user_id}")
async def get_user(user_id: str, runtime: JourneyRuntime = Depends(get_runtime)):
    states = await runtime.engine.list_states(user_id)
    if not states:
        raise HTTPException(status_code=404, detail="User not found.")
    return {"status": True, "data": [state.model_dump(mode="json", by_alias=True) for state in states]}


@router.get("/users/{user_id}/journal")
async def get_user_journal(user_id: str, journey: Optional[str] = None,
                           runtime: JourneyRuntime = Depends(get_runtime)):
    entries = await runtime.engine.journal_for(user_id, journey)
    return snapshot([entry.model_dump(mode="json", by_alias=True) for entry in entries], "No Journal Found")


@router.get("/crm-users")
async def list_crm_users(runtime: JourneyRuntime = Depends(get_runtime)):
    return snapshot(await runtime.crm.list(), "No User Found")
