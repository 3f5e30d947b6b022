from fastapi import APIRouter, HTTPException

from smartrouter.api.schemas import (
    AnalysisKind,
    ModeResponse,
    ModeUpdate,
    OptimizeRequest,
    RecommendRequest,
    ResetRequest,
    SetUsageRequest,
    ShiftRequest,
    ToolCall,
)
from smartrouter.core.usage import CompletionEvent
from smartrouter.errors import ConfigError, TargetNotFound
from smartrouter.observability.logger import get_logger

log = get_logger("api")

router = APIRouter(prefix="/api")


def get_app_state():
    """Shared app state, populated by the lifespan handler."""
    from smartrouter.main import app_state

    return app_state


def _router():
    state = get_app_state()
    if "router" not in state:
        raise HTTPException(status_code=503, detail="Router not started")
    return state["router"]


@router.get("/status")
async def get_status(provider: str = None):
    return _router().status(provider)


@router.get("/predict")
async def get_predictions(provider: str = None, horizon: float = None):
    return _router().predict(provider, horizon)


@router.get("/providers")
async def get_providers():
    return {"providers": _router().providers()}


@router.post("/usage")
async def set_usage(body: SetUsageRequest):
    try:
        info = await _router().set_usage(body.provider, percent=body.percent, tokens=body.tokens)
    except TargetNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    log.info("usage_set_via_api", provider=body.provider, used=info.used)
    return info


@router.post("/usage/record")
async def record_completion(body: CompletionEvent):
    record = await _router().record_completion(body)
    return {"recorded": record is not None, "record": record}


@router.post("/reset")
async def reset_quota(body: ResetRequest):
    try:
        return await _router().reset(body.provider)
    except TargetNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/analyze")
async def analyze(type: AnalysisKind = "all"):
    return _router().analyze(type)


@router.post("/optimize")
async def optimize(body: OptimizeRequest):
    return await _router().optimize(apply=body.apply, plan_filter=body.filter)


@router.get("/mode", response_model=ModeResponse)
async def get_mode():
    return ModeResponse(mode=_router().mode)


@router.put("/mode", response_model=ModeResponse)
async def set_mode(body: ModeUpdate):
    return ModeResponse(mode=await _router().set_mode(body.mode))


@router.post("/recommend")
async def recommend(body: RecommendRequest):
    return _router().recommend(body.prompt)


@router.post("/shift")
async def shift(body: ShiftRequest):
    return await _router().shift(body.from_provider, body.to_provider, apply=body.apply)


@router.get("/tools")
async def get_tools():
    state = get_app_state()
    return {"tools": state["tools"].get_tool_schemas()}


@router.post("/tools/{name}")
async def run_tool(name: str, body: ToolCall):
    state = get_app_state()
    return await state["tools"].execute(name, body.parameters)
