"""
Inbound Solicitation Intake API
FastAPI application receiving forwarded fundraising emails.
"""

import logging

from fastapi import FastAPI, HTTPException

from app.db import get_supabase_admin
from app.routers import inbound_email

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Solicitation Intake API",
    description="Normalizes forwarded fundraising emails and recovers their original sender and send time",
    version="0.1.0",
)

# Include routers
app.include_router(inbound_email.router, prefix="/api", tags=["inbound-email"])


@app.get("/")
async def root():
    return {"message": "Solicitation Intake API", "version": "0.1.0"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    """
    Test the Supabase database connection.

    Executes a lightweight query (SELECT 1 row from submissions) to verify
    that the admin client can reach the database. Returns 503 on failure.
    """
    try:
        client = get_supabase_admin()
    except ValueError as exc:
        raise HTTPException(
            status_code=503,
            detail=f"Database client unavailable: {exc}",
        )

    try:
        client.table("submissions").select("id").limit(1).execute()
        return {"status": "ok", "database": "reachable"}
    except Exception as exc:
        logger.error(f"Database health check failed: {exc}")
        raise HTTPException(
            status_code=503,
            detail=f"Database connection failed: {str(exc)}",
        )
