import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from passr.config import LOG_LEVEL
from passr.database import client, ensure_indexes
from passr.errors import MarketplaceError, status_code_for
from passr.routes import chats, listings, notifications, offers
from passr.tasks.scheduler import start_lifecycle_scheduler

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Passr Marketplace")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "HEAD", "PATCH"],
    allow_headers=["*"],
)

app.include_router(listings.router)
app.include_router(offers.router)
app.include_router(chats.router)
app.include_router(notifications.router)

@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=status_code, content={"detail": exc.detail})

# Lifecycle scheduler, created on startup
scheduler = None

@app.on_event("startup")
async def startup_event():
    """Ensure indexes and start the listing lifecycle jobs"""
    global scheduler
    try:
        await ensure_indexes()
    except Exception as e:
        logger.error("Could not ensure MongoDB indexes: %s", e)
    scheduler = start_lifecycle_scheduler()

@app.on_event("shutdown")
async def shutdown_event():
    """Stop the scheduler when the app shuts down"""
    if scheduler is not None:
        scheduler.shutdown(wait=False)

@app.get("/health")
async def health_check():
    """Liveness probe; pings MongoDB"""
    try:
        await client.admin.command("ping")
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        return {"status": "unhealthy", "database": "disconnected", "error": str(e)}
