"""
MedCrowd Consultation Engine — FastAPI Backend
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import agents, consultations, health, ws
from app.config import settings
from app.db.store import get_store

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


def _mask(val: str) -> str:
    if not val:
        return "(empty)"
    if len(val) <= 8:
        return "***"
    return val[:4] + "..." + val[-4:]


@asynccontextmanager
async def lifespan(_app: FastAPI):
    logger.info("=== Consultation Engine Starting ===")
    logger.info(f"  store_backend       : {settings.store_backend}")
    logger.info(f"  redis_url           : {_mask(settings.redis_url)}")
    logger.info(f"  agent_api_base_url  : {settings.agent_api_base_url or '(empty)'}")
    logger.info(f"  agent_client_secret : {_mask(settings.agent_client_secret)}")
    logger.info(f"  demo_mode           : {settings.demo_mode}")
    logger.info(f"  max_agents          : {settings.max_agents_per_consultation}")
    logger.info(f"  reaction_round      : {settings.reaction_round_enabled}")
    logger.info(f"  summarizer_enabled  : {settings.summarizer_enabled}")
    logger.info(f"  summarizer_api_key  : {_mask(settings.summarizer_api_key)}")

    if not settings.agent_api_base_url and not settings.demo_mode:
        logger.warning("AGENT_API_BASE_URL is empty and demo mode is off -- agent calls will fail!")
    if settings.summarizer_enabled and not settings.summarizer_api_key:
        logger.warning("SUMMARIZER_API_KEY is empty -- generative summaries will fall back to rules")

    store = get_store()
    yield
    await store.close()


app = FastAPI(
    title=settings.app_name,
    description="Fans a health question out to peer AI agents and synthesizes a de-identified report",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(health.router, tags=["health"])
app.include_router(agents.router, prefix="/api/agents", tags=["agents"])
app.include_router(consultations.router, prefix="/api/consultations", tags=["consultations"])
app.include_router(ws.router, prefix="/ws", tags=["websocket"])
