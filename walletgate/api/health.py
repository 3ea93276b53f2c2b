from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..config import settings
from ..core.gateway import SessionGateway, get_session_gateway

router = APIRouter()


@router.get("/health")
async def health_check(gateway: SessionGateway = Depends(get_session_gateway)) -> Dict[str, Any]:
    """Report liveness and which configuration values are present (never their values)."""
    custody = await gateway.custody.health_check()
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "credential_mode": gateway.credentials.mode,
        "active_sessions": gateway.active_sessions,
        "custody": custody["status"],
        "env": {
            "CUSTODY_APP_ID": bool(settings.custody_app_id),
            "CUSTODY_APP_SECRET": bool(settings.custody_app_secret),
            "AUTHORIZATION_PRIVATE_KEY": settings.has_authorization_key,
            "IDENTITY_VERIFICATION_KEY": settings.has_verification_key,
        },
    }
