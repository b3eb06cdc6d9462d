from datetime import datetime, timedelta, timezone

import jwt

from mobipet.core import config

def create_access_token(
    subject: str,
    role: str | None = None,
    email: str | None = None,
    expires_minutes: int | None = None,
) -> str:
    expire_minutes = expires_minutes or config.JWT_EXPIRES_MINUTES
    expire = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    payload = {
        "sub": subject,
        "aud": config.JWT_AUDIENCE,
        "exp": expire,
        "iat": datetime.now(timezone.utc),
    }
    if email:
        payload["email"] = email
    if role:
        payload["user_metadata"] = {"role": role}
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(
        token,
        config.JWT_SECRET_KEY,
        algorithms=[config.JWT_ALGORITHM],
        audience=config.JWT_AUDIENCE,
    )


def role_from_claims(payload: dict) -> str | None:
    for claim in ("user_metadata", "app_metadata"):
        metadata = payload.get(claim) or {}
        if isinstance(metadata, dict) and metadata.get("role"):
            return metadata["role"]
    return None
