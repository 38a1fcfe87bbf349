"""
Runtime configuration for the interview fraud scoring engine.

Settings are read from the environment (optionally populated from a .env file):
- FRAUD_LOG_LEVEL: log level used by configure_logging()
- FRAUD_UNKNOWN_SESSION_POLICY: 'auto_create' or 'reject'
- FRAUD_DEFAULT_CODE_LANGUAGE: language tag for code samples submitted without one
"""
import os
import logging
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


POLICY_AUTO_CREATE = "auto_create"
POLICY_REJECT = "reject"
UNKNOWN_SESSION_POLICIES = (POLICY_AUTO_CREATE, POLICY_REJECT)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


@dataclass(frozen=True)
class Settings:
    """Engine settings resolved from the environment."""
    log_level: str = "INFO"
    unknown_session_policy: str = POLICY_AUTO_CREATE
    default_code_language: str = "javascript"


def get_settings() -> Settings:
    """
    Build settings from environment variables.

    Returns:
        Settings instance

    Raises:
        ValueError: if FRAUD_UNKNOWN_SESSION_POLICY holds an unsupported value
    """
    policy = os.getenv("FRAUD_UNKNOWN_SESSION_POLICY", POLICY_AUTO_CREATE).strip().lower()
    if policy not in UNKNOWN_SESSION_POLICIES:
        raise ValueError(
            f"FRAUD_UNKNOWN_SESSION_POLICY must be one of {UNKNOWN_SESSION_POLICIES}, got {policy!r}"
        )

    return Settings(
        log_level=os.getenv("FRAUD_LOG_LEVEL", "INFO").upper(),
        unknown_session_policy=policy,
        default_code_language=os.getenv("FRAUD_DEFAULT_CODE_LANGUAGE", "javascript").lower(),
    )


def configure_logging(level: Optional[str] = None):
    """Install the root logging configuration (call once from an entry point)."""
    logging.basicConfig(
        level=level or get_settings().log_level,
        format=LOG_FORMAT,
    )
