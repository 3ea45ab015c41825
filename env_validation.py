"""Environment variable validation and management."""

import os
import logging
from pathlib import Path
from typing import Dict

logger = logging.getLogger(__name__)

STORE_BACKENDS = {"memory", "sqlite"}

class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass

def validate_environment() -> None:
    """Validate configuration environment variables.

    Raises EnvironmentError if validation fails.
    """
    defaults = {
        "STORE_BACKEND": "memory",
        "DB_PATH": "data.db",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    backend = os.environ["STORE_BACKEND"].strip().lower()
    if backend not in STORE_BACKENDS:
        raise EnvironmentError(
            f"Invalid STORE_BACKEND '{backend}'; expected one of: {', '.join(sorted(STORE_BACKENDS))}"
        )

    # Catalog overrides must point at existing files.
    path_vars: Dict[str, str] = {
        "CONTENT_LIBRARY_PATH": "Path to the content library JSON",
        "QUESTION_BANK_PATH": "Path to the assessment question bank JSON",
    }
    for var, description in path_vars.items():
        value = os.getenv(var)
        if value and not Path(value).is_file():
            raise EnvironmentError(f"{var} ({description}) does not exist: {value}")

    per_category = get_env_int("QUESTIONS_PER_CATEGORY", 3)
    if per_category <= 0:
        raise EnvironmentError(f"QUESTIONS_PER_CATEGORY must be positive, got {per_category}")

def get_env_int(name: str, default: int) -> int:
    """Get integer value from environment variable."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise EnvironmentError(f"{name} must be an integer, got '{value}'") from exc
