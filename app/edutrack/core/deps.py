from fastapi import Depends, Request
from jose import JWTError
from pydantic import ValidationError as PydanticValidationError

from app.edutrack.core.context import Identity
from app.edutrack.core.error_catalog import AppError, ErrorCatalog
from app.edutrack.core.security import TokenData, decode_token, oauth2_scheme


def get_current_token_data(token: str = Depends(oauth2_scheme)) -> TokenData:
    try:
        payload = decode_token(token)
        return TokenData(**payload)
    except (JWTError, PydanticValidationError, TypeError) as exc:
        raise AppError(ErrorCatalog.INVALID_TOKEN) from exc


def require_identity(request: Request, token_data: TokenData = Depends(get_current_token_data)) -> Identity:
    if not token_data.role:
        raise AppError(ErrorCatalog.INVALID_TOKEN)
    identity = token_data.to_identity()
    request.state.identity = identity
    request.state.user_id = identity.user_id
    request.state.role = identity.role
    return identity


__all__ = [
    "get_current_token_data",
    "require_identity",
]
