import logging
import os

logger = logging.getLogger(__name__)

APP_ENV = os.getenv("APP_ENV", "development")

# JWT Config
JWT_SECRET = os.getenv("JWT_SECRET")
if not JWT_SECRET:
    if APP_ENV == "production":
        raise RuntimeError("JWT_SECRET must be set in production")
    JWT_SECRET = "dev-secret-change"
    logger.warning("JWT_SECRET not set, using development signing key")
JWT_ALGORITHM = "HS256"
JWT_EXPIRATION_MS = int(os.getenv("JWT_EXPIRATION_MS", "86400000"))  # 24h

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "shop")
DATABASE_TIMEOUT_MS = int(os.getenv("DATABASE_TIMEOUT_MS", "5000"))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
