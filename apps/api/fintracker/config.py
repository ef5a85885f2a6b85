import os

DB_PATH = os.getenv(
    "DB_PATH", os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "fintracker.db"))
)
SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", "24"))
REVIEW_PAGE_SIZE = int(os.getenv("REVIEW_PAGE_SIZE", "15"))
MOVEMENTS_PAGE_SIZE = int(os.getenv("MOVEMENTS_PAGE_SIZE", "10"))
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
    ).split(",")
    if origin.strip()
]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
