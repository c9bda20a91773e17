"""
Configuration management for Libreta backend.

Credentials (SUPABASE_SERVICE_KEY, SUPABASE_JWT_SECRET, OPENAI_API_KEY) are
read from the environment where they are used, so tests can patch them.
"""
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Supabase
SUPABASE_URL = os.getenv("SUPABASE_URL", "")

# Writing improvement
IMPROVE_MODEL = os.getenv("LIBRETA_IMPROVE_MODEL", "gpt-4o-mini")

# Quiet interval before an appreciation draft is written (seconds)
DRAFT_DEBOUNCE_SECONDS = float(os.getenv("LIBRETA_DRAFT_DEBOUNCE", "1.0"))

# Server configuration
HOST = os.getenv("LIBRETA_HOST", "0.0.0.0")
PORT = int(os.getenv("LIBRETA_PORT", "3000"))
DEBUG = os.getenv("LIBRETA_DEBUG", "false").lower() in ("1", "true")
LOG_LEVEL = os.getenv("LIBRETA_LOG_LEVEL", "INFO")


class Config:
    """Application configuration class."""

    def __init__(self):
        self.supabase_url = SUPABASE_URL
        self.improve_model = IMPROVE_MODEL
        self.draft_debounce_seconds = DRAFT_DEBOUNCE_SECONDS
        self.log_level = LOG_LEVEL

    def to_dict(self):
        return {
            "supabase_url": self.supabase_url,
            "improve_model": self.improve_model,
            "draft_debounce_seconds": self.draft_debounce_seconds,
            "log_level": self.log_level,
        }

    def update(self, data: dict):
        for key, value in data.items():
            if hasattr(self, key):
                setattr(self, key, value)


# Global config instance
config = Config()
