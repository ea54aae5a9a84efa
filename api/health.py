from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import text
from api.dependencies import get_db
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
def health_check(db: Session = Depends(get_db)):
    """
    Health check endpoint for monitoring and load balancers.
    Returns 200 OK if the database answers, 503 otherwise.
    """
    try:
        db.execute(text("SELECT 1"))
        return {"success": True, "status": "healthy", "database": "connected"}
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"success": False, "status": "unhealthy", "database": "unreachable"},
        )
