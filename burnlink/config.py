import os
from dotenv import load_dotenv

load_dotenv()

BLOB_DIR = os.getenv(
    "BLOB_DIR", os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "blobs"))
)
DB_URL = os.getenv("DB_URL", "sqlite:///./burnlink.db")
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
CRON_SECRET = os.getenv("CRON_SECRET", "")

# Deadlines (seconds)
OPERATION_TIMEOUT_SECONDS = float(os.getenv("OPERATION_TIMEOUT_SECONDS", "10"))
SWEEP_TIMEOUT_SECONDS = float(os.getenv("SWEEP_TIMEOUT_SECONDS", "60"))
CONVERSION_TIMEOUT_SECONDS = float(os.getenv("CONVERSION_TIMEOUT_SECONDS", "20"))

# Each statement is bounded by the ordinary operation deadline.
if DB_URL.startswith("sqlite"):
    DB_CONNECT_ARGS = {"check_same_thread": False, "timeout": OPERATION_TIMEOUT_SECONDS}
elif DB_URL.startswith("postgresql"):
    DB_CONNECT_ARGS = {"options": f"-c statement_timeout={int(OPERATION_TIMEOUT_SECONDS * 1000)}"}
else:
    DB_CONNECT_ARGS = {}

DEFAULT_EXPIRY_HOURS = int(os.getenv("DEFAULT_EXPIRY_HOURS", "72"))
INLINE_THRESHOLD_BYTES = int(os.getenv("INLINE_THRESHOLD_BYTES", str(int(1.5 * 1024 * 1024))))
MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE_BYTES", str(15 * 1024 * 1024)))

UPLOAD_RATE_LIMIT = int(os.getenv("UPLOAD_RATE_LIMIT", "5"))
UPLOAD_RATE_WINDOW_SECONDS = int(os.getenv("UPLOAD_RATE_WINDOW_SECONDS", str(24 * 60 * 60)))
VIEW_RATE_LIMIT = int(os.getenv("VIEW_RATE_LIMIT", "16"))
VIEW_RATE_WINDOW_SECONDS = int(os.getenv("VIEW_RATE_WINDOW_SECONDS", str(60 * 60)))

ENABLE_CLEANER = os.getenv("ENABLE_CLEANER", "true").lower() in {"true", "1", "yes"}
CLEANER_INTERVAL_MINUTES = int(os.getenv("CLEANER_INTERVAL_MINUTES", "60"))
SWEEP_BATCH_SIZE = max(1, int(os.getenv("SWEEP_BATCH_SIZE", "500")))

# Redis Configuration
REDIS_URL = os.getenv("REDIS_URL", "")
