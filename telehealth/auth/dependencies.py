import jwt
from fastapi import Depends, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from telehealth.auth import jwt_handler
from telehealth.database import get_db
from telehealth.errors import APIError
from telehealth.models.provider import Provider
from telehealth.models.user import User

security = HTTPBearer(auto_error=False)


def _unauthorized(message: str) -> APIError:
    return APIError(status.HTTP_401_UNAUTHORIZED, message, code="UNAUTHORIZED")


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None:
        raise _unauthorized("User not authenticated. Please log in again.")

    try:
        payload = jwt_handler.decode_access_token(credentials.credentials)
    except jwt.PyJWTError as exc:
        raise _unauthorized("Invalid or expired token. Please log in again.") from exc

    subject = payload.get("sub")
    if not subject or not str(subject).isdigit():
        raise _unauthorized("Invalid token subject")

    user = db.query(User).filter(User.id == int(subject)).first()
    if user is None:
        raise _unauthorized("User not found")
    return user


def get_current_provider(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Provider:
    provider = db.query(Provider).filter(Provider.user_id == current_user.id).first()
    if provider is None:
        raise APIError(status.HTTP_404_NOT_FOUND, "Provider profile not found", code="PROVIDER_NOT_FOUND")
    return provider
