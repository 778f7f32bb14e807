"""Health check endpoints."""

from fastapi import APIRouter

from havenvault import __version__
from havenvault.config import get_settings
from havenvault.signing.factory import get_signer_type

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "havenvault"}


@router.get("/health/detailed")
async def detailed_health():
    """Detailed health check with redacted configuration."""
    settings = get_settings()
    missing = settings.missing_pipeline_config()
    return {
        "status": "healthy" if not missing else "degraded",
        "service": "havenvault",
        "version": __version__,
        "signer": get_signer_type().value,
        "config": settings.get_safe_dict(),
    }
