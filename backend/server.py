from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
from contextlib import asynccontextmanager
from database import database
from routes import analyze, unlock, referrals

import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from job_runner import run_report_cache_sweep
from services.chain_client import Web3ChainClient
from services.report_cache import ReportCache, REPORT_SWEEP_MINUTES
from services.statement_classifier import StatementClassifier
from services.unlock_service import UnlockService

# Report cache is in-memory only, so the sweep job needs no persistent job store
scheduler = AsyncIOScheduler()

report_cache = ReportCache()
chain_client = Web3ChainClient()


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting ForgetSubs API")
    if os.environ.get("PYTEST_RUNNING"):
        yield
        return

    await database.connect()

    if not os.environ.get("GEMINI_API_KEY") and not os.environ.get("LLM_API_KEY"):
        logger.error("GEMINI_API_KEY is not set. Statement analysis will fail.")
    if not os.environ.get("NFT_CONTRACT_ADDRESS"):
        logger.warning("NFT_CONTRACT_ADDRESS is not set. NFT unlocks are disabled.")

    # Expired report sweep; worst-case staleness is TTL + sweep interval
    scheduler.add_job(
        run_report_cache_sweep,
        IntervalTrigger(minutes=REPORT_SWEEP_MINUTES),
        args=[app.state.report_cache],
        id="report_cache_sweep",
        name="Report Cache Sweep",
        replace_existing=True
    )

    scheduler.start()
    logger.info("Background job scheduler started")

    yield

    # Shutdown
    logger.info("Shutting down ForgetSubs API")
    scheduler.shutdown(wait=False)
    logger.info("Background job scheduler stopped")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title="ForgetSubs API",
    description="Find forgotten subscriptions in your bank statements",
    version="1.0.0",
    lifespan=lifespan
)

app.state.report_cache = report_cache
app.state.chain_client = chain_client
app.state.statement_classifier = StatementClassifier()
app.state.unlock_service = UnlockService(cache=report_cache, chain_client=chain_client)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(analyze.router)
app.include_router(unlock.router)
app.include_router(referrals.router)

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": "ForgetSubs",
        "version": "1.0.0",
        "status": "operational"
    }

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development"),
        "cached_reports": len(app.state.report_cache),
    }


# Validation error handler: log request_id + error locations (never field values)
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = exc.errors()
    logger.warning(
        "Validation failed request_id=%s path=%s errors=%s",
        request_id,
        request.url.path,
        [(e.get("loc"), e.get("type")) for e in errors],
    )
    return JSONResponse(
        status_code=422,
        content={
            "detail": [
                {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
                for e in errors
            ],
            "request_id": request_id,
        },
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
