import asyncio
import json
import logging
from dataclasses import dataclass, field
from uuid import UUID, uuid4

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from cachetools import TTLCache
from slowapi import Limiter
from slowapi.util import get_remote_address

from config import get_settings
from services.market_engine import MarketEngine
from services.market_params import InvalidStepError, MarketConfigError
from schemas.market import (
    AdvanceRequest,
    EngineSnapshot,
    ExternalForceRequest,
    NextSessionRequest,
    SessionCreate,
    SessionState,
    Tick,
)

router = APIRouter(prefix="/api/market", tags=["market"])
settings = get_settings()
logger = logging.getLogger(__name__)

# Rate limiter: keyed by client IP
limiter = Limiter(key_func=get_remote_address)


@dataclass
class HostedSession:
    engine: MarketEngine
    # Serializes advance calls so one engine never steps concurrently
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


# ── Session registry: session id → engine (each with its own RNG tree) ──
_sessions: TTLCache = TTLCache(maxsize=settings.session_cache_size, ttl=settings.session_ttl_seconds)


def _get_session(session_id: UUID) -> HostedSession:
    hosted = _sessions.get(session_id)
    if hosted is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Market session not found"
        )
    return hosted


def _state(session_id: UUID, engine: MarketEngine, ticks: list[Tick] | None = None) -> SessionState:
    return SessionState(
        id=session_id,
        seed=engine.seed,
        month=engine.month,
        session_index=engine.session_index,
        clock=engine.clock.formatted(),
        session_closed=engine.session_closed,
        current_price=engine.price,
        phase=engine.phase,
        regime=engine.regime,
        scenario=engine.scenario,
        tick_count=engine.tick_count,
        ticks=ticks or [],
    )


def _unprocessable(e: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


@router.post("/sessions", response_model=SessionState, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.session_create_rate_limit)
async def create_session(request: Request, data: SessionCreate):
    """Start a new simulated market with its own seed."""
    seed = data.seed if data.seed is not None else settings.default_seed
    config = dict(data.config or {})
    config.setdefault("open_price", settings.default_open_price)
    try:
        engine = MarketEngine(
            seed=seed,
            config=config,
            month=data.month,
            open_price=data.open_price,
            strict_dt=settings.strict_dt,
        )
    except MarketConfigError as e:
        raise _unprocessable(e)

    session_id = uuid4()
    _sessions[session_id] = HostedSession(engine=engine)
    logger.info("Created market session (seed %d)", engine.seed, extra={"session_id": session_id})
    return _state(session_id, engine)


@router.get("/sessions/{session_id}", response_model=SessionState)
async def get_session(session_id: UUID):
    hosted = _get_session(session_id)
    return _state(session_id, hosted.engine)


@router.post("/sessions/{session_id}/advance", response_model=SessionState)
async def advance_session(session_id: UUID, data: AdvanceRequest):
    """Advance the engine by one or more steps and return the emitted ticks."""
    hosted = _get_session(session_id)
    steps = min(data.steps, settings.max_steps_per_request)
    async with hosted.lock:
        try:
            ticks = [
                hosted.engine.advance(data.dt, data.activity_mult, data.time_zone)
                for _ in range(steps)
            ]
        except InvalidStepError as e:
            raise _unprocessable(e)
    return _state(session_id, hosted.engine, ticks)


@router.post("/sessions/{session_id}/next-session", response_model=SessionState)
async def next_session(session_id: UUID, data: NextSessionRequest):
    """Open the next trading session (one macro regime transition)."""
    hosted = _get_session(session_id)
    async with hosted.lock:
        try:
            hosted.engine.start_session(month=data.month, open_price=data.open_price)
        except MarketConfigError as e:
            raise _unprocessable(e)
    return _state(session_id, hosted.engine)


@router.post("/sessions/{session_id}/force", response_model=SessionState)
async def inject_force(session_id: UUID, data: ExternalForceRequest):
    """Push the price with an external (news) force that decays over the next ticks."""
    hosted = _get_session(session_id)
    async with hosted.lock:
        try:
            hosted.engine.inject_external_force(data.force)
        except InvalidStepError as e:
            raise _unprocessable(e)
    return _state(session_id, hosted.engine)


@router.get("/sessions/{session_id}/outlook")
async def get_outlook(session_id: UUID, horizon: int = Query(4, ge=1, le=12)):
    """Current regime outlook and a simulated preview of the coming sessions."""
    engine = _get_session(session_id).engine
    return {
        "outlook": engine.regime_outlook().model_dump(mode="json"),
        "preview": [entry.model_dump(mode="json") for entry in engine.regime_preview(horizon)],
    }


@router.get("/sessions/{session_id}/snapshot", response_model=EngineSnapshot)
async def get_snapshot(session_id: UUID):
    """Capture the full engine state for save/resume."""
    hosted = _get_session(session_id)
    async with hosted.lock:
        return hosted.engine.snapshot()


@router.post("/sessions/restore", response_model=SessionState, status_code=status.HTTP_201_CREATED)
async def restore_session(snapshot: EngineSnapshot):
    """Resume a saved engine under a new session id."""
    try:
        engine = MarketEngine.restore(snapshot, strict_dt=settings.strict_dt)
    except MarketConfigError as e:
        raise _unprocessable(e)
    session_id = uuid4()
    _sessions[session_id] = HostedSession(engine=engine)
    logger.info("Restored market session at tick %d", engine.tick_count, extra={"session_id": session_id})
    return _state(session_id, engine)


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(session_id: UUID):
    _get_session(session_id)
    _sessions.pop(session_id, None)


@router.get("/sessions/{session_id}/stream")
async def stream_session(
    session_id: UUID,
    count: int = Query(100, ge=1, le=10000),
    dt: float = Query(1.0),
    activity_mult: float = Query(1.0, ge=0),
):
    """Server-Sent Events tick feed paced by the sampled tick intervals."""
    hosted = _get_session(session_id)
    speed = max(settings.stream_speed, 1e-6)

    async def event_generator():
        for _ in range(count):
            async with hosted.lock:
                try:
                    tick = hosted.engine.advance(dt, activity_mult)
                except InvalidStepError as e:
                    yield f"event: error\ndata: {json.dumps({'detail': str(e)})}\n\n"
                    return
                closed = hosted.engine.session_closed
            if tick.session_event is not None:
                yield f"event: session\ndata: {json.dumps({'event': tick.session_event.value})}\n\n"
            yield f"data: {tick.model_dump_json()}\n\n"
            if closed:
                yield f"event: complete\ndata: {json.dumps({'status': 'session_closed'})}\n\n"
                return
            await asyncio.sleep(tick.interval_ms / 1000 / speed)
        yield f"event: complete\ndata: {json.dumps({'status': 'count_reached'})}\n\n"

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
