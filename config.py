"""Application settings read from the environment (and an optional .env file)."""
import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int | None) -> int | None:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./blog.db")
SQL_ECHO = _env_bool("SQL_ECHO")

SECRET_KEY = os.getenv("SECRET_KEY")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
# Unset means issued tokens never expire
TOKEN_EXPIRE_MINUTES = _env_int("TOKEN_EXPIRE_MINUTES", None)

CACHE_PREFIX = os.getenv("CACHE_PREFIX", "blog_cache_")
POST_CACHE_TTL = _env_int("POST_CACHE_TTL", 60 * 60)
USER_CACHE_TTL = _env_int("USER_CACHE_TTL", 60)

MEDIA_ROOT = os.getenv("MEDIA_ROOT", os.path.join(".", "storage", "media"))
MEDIA_URL = os.getenv("MEDIA_URL", "/media")

DEFAULT_PER_PAGE = _env_int("DEFAULT_PER_PAGE", 10)
MAX_PER_PAGE = _env_int("MAX_PER_PAGE", 100)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE")
