"""Centralized settings and Cosmos DB container names."""
from typing import Dict
import os

from dotenv import load_dotenv

load_dotenv()

# ===== Database =====

# COSMOS_DB_ENDPOINT: when unset the service runs in development mode on in-memory stores
COSMOS_DB_ENDPOINT = os.getenv("COSMOS_DB_ENDPOINT")

# COSMOS_DB_KEY: account key; when empty the managed identity credential is used
COSMOS_DB_KEY = os.getenv("COSMOS_DB_KEY", "")

DATABASE_NAME = os.getenv("DATABASE_NAME", "lms_assessments")

# ===== Test Session Timer Settings =====

# AUTOSAVE_INTERVAL_SECONDS: how often in-progress answers are persisted as a draft
AUTOSAVE_INTERVAL_SECONDS = float(os.getenv("AUTOSAVE_INTERVAL_SECONDS", "5"))

# TIMER_POLL_INTERVAL_SECONDS: how often the countdown is re-derived from the session row
TIMER_POLL_INTERVAL_SECONDS = float(os.getenv("TIMER_POLL_INTERVAL_SECONDS", "1"))

# ===== Auto-Submission Settings =====

# AUTO_SUBMIT_ENABLED: run the server-side sweeper for abandoned expired sessions
AUTO_SUBMIT_ENABLED = os.getenv("AUTO_SUBMIT_ENABLED", "true").lower() == "true"

# AUTO_SUBMIT_GRACE_PERIOD: seconds after expiry before the sweeper takes over from the client
AUTO_SUBMIT_GRACE_PERIOD = int(os.getenv("AUTO_SUBMIT_GRACE_PERIOD", "30"))

# AUTO_SUBMIT_SWEEP_INTERVAL: seconds between sweeper runs
AUTO_SUBMIT_SWEEP_INTERVAL = float(os.getenv("AUTO_SUBMIT_SWEEP_INTERVAL", "60"))

# ===== Code Execution =====

# CODE_EXECUTOR: "piston" (public, no key) or "judge0" (RapidAPI key required)
CODE_EXECUTOR = os.getenv("CODE_EXECUTOR", "piston").lower()
PISTON_API_URL = os.getenv("PISTON_API_URL", "https://emkc.org/api/v2/piston")
JUDGE0_API_URL = os.getenv("JUDGE0_API_URL", "https://judge0-ce.p.rapidapi.com")
JUDGE0_API_KEY = os.getenv("JUDGE0_API_KEY", "")
CODE_EXECUTION_TIMEOUT = float(os.getenv("CODE_EXECUTION_TIMEOUT", "30"))

# ===== Auth =====

SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "480"))

# ===== Logging =====

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# ===== Container Definitions =====

# Container definitions with partition key fields (logical keys, not paths)
COLLECTIONS: Dict[str, Dict[str, str]] = {
    "ASSESSMENTS": {"name": "assessments", "pk_field": "id"},
    "QUESTIONS": {"name": "questions", "pk_field": "assessment_id"},
    "TEST_SESSIONS": {"name": "test_sessions", "pk_field": "id"},
    "DRAFT_ANSWERS": {"name": "draft_answers", "pk_field": "session_id"},
    "SUBMISSIONS": {"name": "submissions", "pk_field": "assessment_id"},
    "CODING_QUESTIONS": {"name": "coding_questions", "pk_field": "id"},
    "HIDDEN_TEST_CASES": {"name": "hidden_test_cases", "pk_field": "question_id"},
    "CODING_SUBMISSIONS": {"name": "coding_submissions", "pk_field": "question_id"},
    "USERS": {"name": "users", "pk_field": "id"},
}

# Convenience single-source names
CONTAINER = {k: v["name"] for k, v in COLLECTIONS.items()}
