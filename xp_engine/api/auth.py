"""Bearer-token auth for the XP API (keys come from config.API_KEYS)"""
import hmac
import logging
from fastapi import HTTPException, Security, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from xp_engine import config

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(scheme_name="XPEngineKey", description="Portal or webhook service key")


def _is_known_key(candidate: str) -> bool:
    # compare_digest against every key so timing does not reveal which one matched
    matches = [hmac.compare_digest(candidate.encode(), key.encode()) for key in config.API_KEYS]
    return any(matches)


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials = Security(bearer_scheme)
) -> str:
    """
    FastAPI dependency guarding every /api/v1/xp route

    503 while the service has no keys configured, 401 for an unknown key.
    """
    if not config.API_KEYS:
        logger.error("API_KEYS is empty; XP API refuses all callers")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="XP API keys not configured"
        )

    if not _is_known_key(credentials.credentials):
        logger.warning("Rejected XP API call with unknown key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown XP API key",
            headers={"WWW-Authenticate": "Bearer"}
        )

    return credentials.credentials
