"""
Engine configuration - every tunable is read once from the environment.
Defaults reproduce the reference confidence policy.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/memory.db")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Decision policy
AUTO_CORRECT_THRESHOLD = float(os.getenv("AUTO_CORRECT_THRESHOLD", "0.8"))
MAX_CONFIDENCE = float(os.getenv("MAX_CONFIDENCE", "0.95"))
REJECTION_PENALTY = float(os.getenv("REJECTION_PENALTY", "0.3"))
LOW_CONFIDENCE_LEARNING_RATE = float(os.getenv("LOW_CONFIDENCE_LEARNING_RATE", "0.05"))

# Time-based decay (applied lazily on read)
MIN_CONFIDENCE = float(os.getenv("MIN_CONFIDENCE", "0.2"))
DECAY_RATE_PER_DAY = float(os.getenv("DECAY_RATE_PER_DAY", "0.01"))

# Duplicate guard
DUPLICATE_WINDOW_DAYS = int(os.getenv("DUPLICATE_WINDOW_DAYS", "2"))
DUPLICATE_HISTORY_SIZE = int(os.getenv("DUPLICATE_HISTORY_SIZE", "10000"))

# Bootstrap loader
BOOTSTRAP_CONFIDENCE = float(os.getenv("BOOTSTRAP_CONFIDENCE", "0.6"))

# Version string
VERSION = "0.3.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or DB_PATH).parent.mkdir(parents=True, exist_ok=True)
