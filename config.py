import os
from typing import List

from dotenv import load_dotenv

load_dotenv()


# ---------- MongoDB ----------

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "analytics")
MONGO_TIMEOUT_MS = int(os.getenv("MONGO_TIMEOUT_MS", "10000"))

# hard cap on documents pulled into one dataset
MAX_RESULT_SIZE = int(os.getenv("MAX_RESULT_SIZE", "10000"))


# ---------- App ----------

DATASET_CACHE_SIZE = int(os.getenv("DATASET_CACHE_SIZE", "100"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def allowed_origins() -> List[str]:
    raw = os.getenv("ALLOW_ORIGINS", "*")
    return [o.strip() for o in raw.split(",") if o.strip()]
