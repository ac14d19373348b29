from fastapi import Request

from journeyflow.services.runtime import JourneyRuntime


def get_runtime(request: Request) -> JourneyRuntime:
    return request.app.state.runtime


def snapshot(items, empty_message: str) -> dict:
    """Read-only listing payload: data when present, a status message when empty."""
    if items:
        return {"status": True, "data": items}
    return {"status": False, "message": empty_message}
