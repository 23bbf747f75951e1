import os
from dotenv import load_dotenv

# Load .env from the backend directory
load_dotenv(os.path.join(os.path.dirname(__file__), "..", "..", ".env"))


def _float_list(raw: str) -> tuple:
    return tuple(float(part) for part in raw.split(",") if part.strip())


SECRET_KEY: str = os.getenv("SECRET_KEY", "recall-dev-secret-change-in-prod")
ALGORITHM: str = "HS256"

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

# Database, stored in backend/data/
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
BACKEND_DIR = os.path.abspath(os.path.join(BASE_DIR, "..", ".."))

DATABASE_PATH: str = os.getenv(
    "DATABASE_PATH",
    os.path.join(BACKEND_DIR, "data", "recall.db"),
)

# FSRS memory model. Unset FSRS_WEIGHTS keeps the fsrs library's default weights.
FSRS_WEIGHTS: tuple = _float_list(os.getenv("FSRS_WEIGHTS", ""))
FSRS_DESIRED_RETENTION: float = float(os.getenv("FSRS_DESIRED_RETENTION", "0.9"))
FSRS_MAXIMUM_INTERVAL: int = int(os.getenv("FSRS_MAXIMUM_INTERVAL", "365"))  # days
FSRS_LEARNING_STEPS_MINUTES: tuple = _float_list(os.getenv("FSRS_LEARNING_STEPS_MINUTES", "1,10"))
FSRS_RELEARNING_STEPS_MINUTES: tuple = _float_list(os.getenv("FSRS_RELEARNING_STEPS_MINUTES", "10"))
FSRS_MIN_STABILITY: float = float(os.getenv("FSRS_MIN_STABILITY", "0.1"))
FSRS_LAPSE_STABILITY_CEILING: float = float(os.getenv("FSRS_LAPSE_STABILITY_CEILING", "0.9"))

# Review queue
THIN_SCORE_THRESHOLD: float = float(os.getenv("THIN_SCORE_THRESHOLD", "0"))
CONFLICT_SCORE_THRESHOLD: float = float(os.getenv("CONFLICT_SCORE_THRESHOLD", "0"))
TARGET_PHRASINGS_PER_CONCEPT: int = int(os.getenv("TARGET_PHRASINGS_PER_CONCEPT", "5"))
DEFAULT_PAGE_SIZE: int = 25
MIN_PAGE_SIZE: int = 10
MAX_PAGE_SIZE: int = 100
MAX_SEARCH_RESULTS: int = 50
MAX_REVIEW_CANDIDATES: int = 25

# Interaction recording
RECORD_MAX_ATTEMPTS: int = int(os.getenv("RECORD_MAX_ATTEMPTS", "3"))
RECORD_RETRY_DELAY_SECONDS: float = float(os.getenv("RECORD_RETRY_DELAY_SECONDS", "0.05"))


def build_scheduler_parameters():
    """SchedulerParameters populated from the environment."""
    from recall.domain.scheduling.models import SchedulerParameters

    return SchedulerParameters(
        weights=FSRS_WEIGHTS or None,
        desired_retention=FSRS_DESIRED_RETENTION,
        maximum_interval=FSRS_MAXIMUM_INTERVAL,
        learning_steps=FSRS_LEARNING_STEPS_MINUTES,
        relearning_steps=FSRS_RELEARNING_STEPS_MINUTES,
        min_stability=FSRS_MIN_STABILITY,
        lapse_stability_ceiling=FSRS_LAPSE_STABILITY_CEILING,
    )
