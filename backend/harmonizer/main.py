import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from harmonizer.config import settings
from harmonizer.database import check_db_connection
from harmonizer.routers.control_mapping import router as control_mapping_router
from harmonizer.routers.harmonization import router as harmonization_router

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(harmonization_router)
app.include_router(control_mapping_router)


@app.get("/health")
async def health():
    """Health check — verifies API is running and database is reachable."""
    try:
        await check_db_connection()
        db_status = "connected"
    except Exception as exc:
        db_status = f"error: {exc}"

    return {
        "status": "ok" if db_status == "connected" else "degraded",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "database": db_status,
    }
