import logging
import os

# -----------------------------
# Configuration & Logging
# -----------------------------
DATABASE_URL = os.getenv("LIBRARY_DB", "sqlite:///./library.db")
LOG_LEVEL = os.getenv("LIBRARY_LOG", "INFO")

JWT_SECRET = os.getenv("LIBRARY_JWT_SECRET", "dev_secret_change_me")
JWT_ALGORITHM = os.getenv("LIBRARY_JWT_ALGORITHM", "HS256")
JWT_TTL_DAYS = int(os.getenv("LIBRARY_JWT_TTL_DAYS", "7"))

CORS_ORIGINS = [o.strip() for o in os.getenv("LIBRARY_CORS_ORIGIN", "*").split(",") if o.strip()]

SERVICE_NAME = "library-circulation"


def configure_logging(level=None):
    logging.basicConfig(level=level or LOG_LEVEL,
                        format="%(asctime)s %(levelname)s %(name)s - %(message)s")
