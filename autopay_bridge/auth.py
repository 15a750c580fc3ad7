from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt

from autopay_bridge.config import Settings, get_settings


def verify_token(authorization: str = Header(None), settings: Settings = Depends(get_settings)):
    """Bearer JWT guard for the operator endpoints."""
    try:
        scheme, token = (authorization or "").split()
        if scheme.lower() != "bearer":
            raise ValueError(scheme)
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except (ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
