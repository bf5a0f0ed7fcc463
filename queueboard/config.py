"""Configuration for the patient queue board.

All tunables centralized here - override through environment variables or a
.env file without touching code.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


# Backend API
QUEUE_API_PORT = int(os.getenv("QUEUE_API_PORT", "5000"))
QUEUE_API_BASE_URL = os.getenv("QUEUE_API_BASE_URL", f"http://localhost:{QUEUE_API_PORT}")
CLINIC_ID = os.getenv("CLINIC_ID", "clinic-downtown")

# HTTP resilience
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "15"))
HTTP_MAX_RETRIES = int(os.getenv("HTTP_MAX_RETRIES", "3"))
CIRCUIT_FAILURE_THRESHOLD = int(os.getenv("CIRCUIT_FAILURE_THRESHOLD", "5"))
CIRCUIT_TIMEOUT_SECONDS = int(os.getenv("CIRCUIT_TIMEOUT_SECONDS", "60"))

# Status sync
SYNC_TIMEOUT_SECONDS = float(os.getenv("SYNC_TIMEOUT_SECONDS", "10"))
RECONNECT_MAX_BACKOFF_SECONDS = float(os.getenv("RECONNECT_MAX_BACKOFF_SECONDS", "30"))

# Wait-time estimation (minutes per patient ahead in the waiting lane)
AVERAGE_SERVICE_MINUTES = int(os.getenv("AVERAGE_SERVICE_MINUTES", "20"))

# Backend business rules: allow Waiting -> Completed without passing InService
ALLOW_LANE_SKIP = _env_bool("ALLOW_LANE_SKIP", False)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
