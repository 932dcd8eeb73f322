# /app/routes/bots.py

import structlog
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from app.models.flow import RunRequest
from app.services.bot_service import bot_service
from app.utils.dependencies import verify_api_key
from app.utils.metrics import response_time_histogram
from app.workflows.errors import (
    FlowNotFound,
    HandlerFailure,
    InvalidFlowDefinition,
    PersistenceFailure,
)

# Bot runner endpoints. Other services call these to start or resume a
# session's walk; errors map to status codes so callers can tell a
# missing flow from a failed step.

router = APIRouter(
    prefix="/bots",
    tags=["Bots"],
    dependencies=[Depends(verify_api_key)]
)

log = structlog.get_logger(__name__)


def _effect_failures(failures) -> list:
    return [
        {"platform": failure.effect.platform, "node_id": failure.effect.metadata.get("node_id"), "error": failure.error}
        for failure in failures
    ]


def _error(status_code: int, error, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error.kind, "message": str(error), **extra},
    )


@router.post("/run")
async def run_bot(request: RunRequest):
    """Walk the bot's flow for one session until it suspends or finishes."""
    with response_time_histogram.labels(endpoint="bots_run").time():
        try:
            result = await bot_service.run_bot(request)
        except FlowNotFound as e:
            return _error(404, e)
        except InvalidFlowDefinition as e:
            return _error(422, e)
        except HandlerFailure as e:
            log.error("bot_run_handler_failure", bot_id=request.bot_id, session_id=request.session_id,
                      node_id=e.node_id, executed_steps=e.executed_steps)
            return _error(500, e, executed_steps=e.executed_steps, node_id=e.node_id,
                          effect_failures=_effect_failures(e.effect_failures))
        except PersistenceFailure as e:
            log.error("bot_run_persistence_failure", bot_id=request.bot_id, session_id=request.session_id,
                      executed_steps=e.executed_steps)
            return _error(503, e, executed_steps=e.executed_steps,
                          effect_failures=_effect_failures(e.effect_failures))

    return {
        "success": True,
        "executed_steps": result.executed_steps,
        "status": result.status.value if result.status else None,
        "current_node_id": result.current_node_id,
        "effect_failures": _effect_failures(result.effect_failures),
    }


@router.post("/sessions/{session_id}/drop")
async def drop_session(session_id: str):
    """Abandon an open session so later messages no longer resume it."""
    if not await bot_service.drop_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found or already finished")
    return {"success": True, "session_id": session_id, "status": "dropped"}
