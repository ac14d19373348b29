import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import ValidationError

from journeyflow.api.deps import get_runtime
from journeyflow.errors import (
    ConcurrentUpdateError,
    InvalidEventError,
    JourneyNotFoundError,
    UserNotEnrolledError,
)
from journeyflow.models.journey import Event
from journeyflow.services.runtime import JourneyRuntime

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/events/{journey_name}/{user_id}")
async def post_event(
    journey_name: str,
    user_id: str,
    body: Dict[str, Any] = Body(..., examples=[{"type": "email_response", "response": "yes"}]),
    runtime: JourneyRuntime = Depends(get_runtime),
):
    """
    Apply an event to a user's journey. Unknown users are enrolled first
    when auto-enrollment is on.
    """
    try:
        event = Event.from_external(body)
    except ValidationError:
        raise HTTPException(status_code=422, detail="Event type is required.")
    except InvalidEventError as e:
        raise HTTPException(status_code=400, detail=str(e))

    engine = runtime.engine
    try:
        if runtime.auto_enroll:
            await engine.enroll(user_id, journey_name)
        outcome = await engine.handle_event(user_id, journey_name, event)
    except JourneyNotFoundError:
        raise HTTPException(status_code=404, detail="Journey not found.")
    except UserNotEnrolledError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConcurrentUpdateError as e:
        logger.warning(f"[EVENT] Gave up on event for user {user_id}: {e}")
        raise HTTPException(status_code=409, detail=str(e))

    return {
        "status": True,
        "message": "Event processed successfully.",
        "outcome": outcome.model_dump(mode="json", by_alias=True),
    }
