import base64
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from pymongo.database import Database

from config import BCRYPT_ROUNDS, JWT_ALGORITHM, JWT_EXPIRATION_MS, JWT_SECRET
from database import get_db

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)


# Utilities

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # stored value is not a recognised hash
        logger.warning("Unrecognised password hash format")
        return False


def dummy_verify_password():
    """Spend the same time as a real verification when no user matched."""
    pwd_context.dummy_verify()


class TokenService:
    """
    Issues and checks HS256 bearer tokens.

    A token carries the subject (email), ``userId``, ``iat`` and ``exp``.
    ``validate`` never raises: malformed, expired and tampered tokens all come
    back as ``False`` so callers cannot tell the failure modes apart.
    """

    def __init__(self, secret: str, ttl_ms: int, algorithm: str = JWT_ALGORITHM):
        self.secret = secret
        self.ttl = timedelta(milliseconds=ttl_ms)
        self.algorithm = algorithm

    def issue(self, subject: str, user_id: str) -> str:
        issued_at = datetime.now(timezone.utc)
        claims = {
            "sub": subject,
            "userId": str(user_id),
            "iat": issued_at,
            "exp": issued_at + self.ttl,
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def _claims(self, token: str) -> dict:
        return jwt.decode(token, self.secret, algorithms=[self.algorithm])

    @staticmethod
    def _canonical_signature(token: str) -> bool:
        # the trailing character of an HS256 signature carries two unused bits
        signature = token.rsplit(".", 1)[-1]
        try:
            raw = base64.urlsafe_b64decode(signature + "=" * (-len(signature) % 4))
        except ValueError:
            return False
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii") == signature

    def validate(self, token: str) -> bool:
        if not self._canonical_signature(token):
            logger.warning("JWT token validation error: non-canonical signature encoding")
            return False
        try:
            self._claims(token)
            return True
        except JWTError as e:
            logger.warning("JWT token validation error: %s", e)
        return False

    def subject_of(self, token: str) -> str:
        return self._claims(token)["sub"]

    def user_id_of(self, token: str) -> str:
        return self._claims(token)["userId"]


token_service = TokenService(JWT_SECRET, JWT_EXPIRATION_MS)


class Identity(BaseModel):
    user_id: str
    name: str
    email: str


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


def authenticate(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    db: Database = Depends(get_db),
) -> Optional[Identity]:
    """
    Authentication gate, installed on the whole application.

    Attaches the caller's identity when a valid bearer token names an existing
    user. It never rejects a request: anonymous callers get ``None`` and it is
    up to the handler to demand an identity through ``require_identity``.
    """
    identity = None
    token = bearer_token(authorization)
    if token and token_service.validate(token):
        user = db["user"].find_one({"email": token_service.subject_of(token)})
        if user:
            identity = Identity(user_id=str(user["_id"]), name=user.get("name", ""), email=user["email"])
        else:
            logger.info("Token subject no longer exists, continuing anonymously")
    request.state.identity = identity
    return identity


def require_identity(identity: Optional[Identity] = Depends(authenticate)) -> Identity:
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity
