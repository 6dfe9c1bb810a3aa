from dataclasses import dataclass
from typing import Mapping, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from jobchat import config
from jobchat.errors import InvalidCredentials
from jobchat.models import Role

BEARER_PREFIX = "Bearer "
TOKEN_QUERY_PARAM = "token"


@dataclass(frozen=True)
class Identity:
    """Verified caller, as vouched for by the portal's token issuer."""

    user_id: int
    role: Role

    @property
    def is_recruiter(self) -> bool:
        return self.role == Role.RECRUITER

    @property
    def is_candidate(self) -> bool:
        return self.role == Role.CANDIDATE


def decode_jwt(token: str, secret_key: str = None, algorithm: str = None) -> dict:
    try:
        return jwt.decode(
            token,
            secret_key or config.SECRET_KEY,
            algorithms=[algorithm or config.ALGORITHM],
        )
    except ExpiredSignatureError as exc:
        raise InvalidCredentials("Session expired. Please login again.") from exc
    except JWTError as exc:
        raise InvalidCredentials("Invalid token") from exc


def verify_token(token: str, secret_key: str = None, algorithm: str = None) -> Identity:
    payload = decode_jwt(token, secret_key, algorithm)

    if "user_id" not in payload or "role" not in payload:
        raise InvalidCredentials("Token is missing user_id or role")
    try:
        return Identity(user_id=int(payload["user_id"]), role=Role(payload["role"]))
    except (TypeError, ValueError) as exc:
        raise InvalidCredentials("Token carries an invalid user_id or role") from exc


def extract_token(headers: Mapping[str, str], query_params: Mapping[str, str]) -> Optional[str]:
    """Bearer header first, then ?token= for clients that cannot set headers."""
    auth_header = headers.get("authorization")
    if auth_header and auth_header.startswith(BEARER_PREFIX):
        token = auth_header[len(BEARER_PREFIX):].strip()
        if token:
            return token
    token = query_params.get(TOKEN_QUERY_PARAM)
    return token or None
