import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from journeyflow.api.deps import get_runtime, snapshot
from journeyflow.errors import DuplicateNameError, InvalidGraphError, JourneyNotFoundError
from journeyflow.models.journey import JourneyDefinition
from journeyflow.services.runtime import JourneyRuntime

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/journeys")
async def create_journey(
    definition: JourneyDefinition,
    replace: bool = Query(True, description="Replace an existing journey with the same name"),
    runtime: JourneyRuntime = Depends(get_runtime),
):
    """
    Register a journey definition. Users already on an older version of the
    journey keep following that version.
    """
    logger.info(f"Journey registration called: {definition.name} ({len(definition.blocks)} blocks)")
    try:
        stored = await runtime.engine.register_journey(definition, replace=replace)
    except InvalidGraphError as e:
        raise HTTPException(status_code=400, detail={"message": str(e), "problems": e.problems})
    except DuplicateNameError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {
        "status": True,
        "message": "Journey created successfully.",
        "data": stored.model_dump(mode="json", by_alias=True),
    }


@router.get("/journeys")
async def list_journeys(runtime: JourneyRuntime = Depends(get_runtime)):
    journeys = await runtime.engine.list_journeys()
    return snapshot(
        [journey.model_dump(mode="json", by_alias=True) for journey in journeys],
        "No Journey Found",
    )


@router.get("/journeys/{journey_name}")
async def get_journey(journey_name: str, runtime: JourneyRuntime = Depends(get_runtime)):
    try:
        journey = await runtime.engine.get_journey(journey_name)
    except JourneyNotFoundError:
        raise HTTPException(status_code=404, detail="Journey not found.")
    return {"status": True, "data": journey.model_dump(mode="json", by_alias=True)}


@router.post("/journeys/{journey_name}/enroll/{user_id}")
async def enroll_user(journey_name: str, user_id: str, runtime: JourneyRuntime = Depends(get_runtime)):
    try:
        state = await runtime.engine.enroll(user_id, journey_name)
    except JourneyNotFoundError:
        raise HTTPException(status_code=404, detail="Journey not found.")
    return {"status": True, "data": state.model_dump(mode="json", by_alias=True)}
