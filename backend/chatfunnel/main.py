import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from chatfunnel.db.init import init_db
from chatfunnel.api import deps
from chatfunnel.api.chat import router as chat_router
from chatfunnel.api.conversations import router as conversations_router
from chatfunnel.api.funnel import router as funnel_router
from chatfunnel.api.tickets import router as tickets_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("=== APPLICATION STARTUP ===")
    try:
        app.state.mongo = await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)
        raise
    logger.info("Celery worker and beat should be running in separate processes.")
    logger.info("=== APPLICATION STARTUP COMPLETE ===")

    yield

    logger.info("=== APPLICATION SHUTDOWN ===")
    await deps.clock.stop()
    deps.registry.clear()
    app.state.mongo.close()
    logger.info("=== APPLICATION SHUTDOWN COMPLETE ===")


app = FastAPI(lifespan=lifespan)

# Chat widgets are embedded on arbitrary landing pages
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    return {"message": "Chat Funnel API"}


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "live_runs": len(deps.registry.runs),
        "pending_timers": len(deps.clock.timers),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


app.include_router(chat_router, prefix="/api", tags=["chat"])
app.include_router(funnel_router, prefix="/api", tags=["funnels"])
app.include_router(tickets_router, prefix="/api", tags=["tickets"])
app.include_router(conversations_router, prefix="/api", tags=["conversations"])
