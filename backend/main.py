import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import auth_router, threats_router, ioc_router, alerts_router, reports_router
from config import get_settings
from core import setup_logging
from core.engine import get_engine
from alerts import get_alert_engine

VERSION = "1.0.0"

settings = get_settings()
setup_logging(settings.log_level)
logger = logging.getLogger("threatview")


@asynccontextmanager
async def lifespan(app: FastAPI):
    get_engine()
    logger.info("ThreatView API started (db=%s)", settings.db_path)
    yield
    logger.info("ThreatView API stopped")

app = FastAPI(
    title="ThreatView API",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router, prefix="/api")
app.include_router(threats_router, prefix="/api")
app.include_router(ioc_router, prefix="/api")
app.include_router(alerts_router, prefix="/api")
app.include_router(reports_router, prefix="/api")

@app.get("/")
async def root():
    return {
        "name": "ThreatView API",
        "version": VERSION,
        "docs": "/docs",
    }

@app.get("/health")
async def health():
    engine = get_engine()
    stats = engine.stats()
    alert_stats = get_alert_engine().stats()

    return {
        "status": "healthy",
        "engine": {
            "threats_ingested": stats["threats_ingested"],
            "threats_created": stats["threats_created"],
            "uptime_seconds": stats["uptime_seconds"],
            "storage": stats["storage"],
        },
        "alerts": {
            "rules_count": alert_stats["rules_count"],
            "active_rules": alert_stats["active_rules"],
            "triggers": alert_stats["triggers"],
        }
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
