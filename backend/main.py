"""
Tickstream - Intraday Market Simulator
Deterministic tick-stream engine for a trading-practice game.
"""
import logging
import json
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from config import get_settings
from routers import market_router
from routers.market import _sessions, limiter
from services.market_engine import MarketEngine

settings = get_settings()
logger = logging.getLogger("tickstream")

HEALTH_SEED = 0
HEALTH_STEPS = 5


class JSONFormatter(logging.Formatter):
    """One JSON object per record; hosted-session logs carry their session id."""
    def format(self, record):
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0]:
            log["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "session_id"):
            log["session_id"] = str(record.session_id)
        return json.dumps(log)


def setup_logging():
    handler = logging.StreamHandler(sys.stdout)
    if settings.json_logs:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Starting Tickstream API (strict_dt=%s)", settings.strict_dt)
    yield
    logger.info("Shutting down Tickstream API with %d hosted sessions", len(_sessions))


app = FastAPI(title="Tickstream API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Rate limiter state (required by slowapi)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(market_router)


@app.get("/", tags=["ops"])
async def root():
    return {"name": "Tickstream API", "version": "1.0.0", "hosted_sessions": len(_sessions)}


@app.get("/health", tags=["ops"])
async def health_check():
    """Replays a short seeded run twice; the engine is healthy when both runs match."""
    checks = {"api": "ok"}
    try:
        first = MarketEngine(seed=HEALTH_SEED).run(HEALTH_STEPS)
        second = MarketEngine(seed=HEALTH_SEED).run(HEALTH_STEPS)
        checks["engine"] = "ok" if first == second else "nondeterministic"
    except Exception:
        logger.exception("Engine health check failed")
        checks["engine"] = "error"
    overall = "healthy" if checks["engine"] == "ok" else "degraded"
    return {"status": overall, "service": "tickstream-api", "checks": checks}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=settings.host, port=settings.port, reload=settings.debug)
