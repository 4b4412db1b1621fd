import os

from dotenv import load_dotenv
load_dotenv()


def _flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")
PORT = int(os.getenv("PORT", 9000))

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
COOKIE_NAME = "token"
COOKIE_SECURE = _flag("COOKIE_SECURE", True)
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", 60 * 60))

CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME", "")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY", "")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET", "")
STORAGE_TIMEOUT = float(os.getenv("STORAGE_TIMEOUT", 10))

LOG_DIR = os.getenv("LOG_DIR", "")

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_PAGE = 1_000_000
MAX_LIMIT = 100
MAX_PRODUCT_IMAGES = 4
