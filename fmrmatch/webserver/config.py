"""WebServer Configuration

Centralized configuration for the fmrmatch HTTP service.
All settings can be adjusted here without modifying the source code;
FMRMATCH_* environment variables override the deployment-specific ones.

"""

import os
from pathlib import Path
from typing import List

from fmrmatch.config import DEFAULT_THRESHOLD


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {value!r}")


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# ============================================================================
# PATHS
# ============================================================================

# Project root and paths
PROJECT_ROOT = Path(__file__).parent.parent.parent

# SSL Certificates
SSL_CERT_DIR = PROJECT_ROOT / "certs"
SSL_CERT_FILE = SSL_CERT_DIR / "cert.pem"
SSL_KEY_FILE = SSL_CERT_DIR / "key.pem"

# Logs
LOG_DIR = Path(os.environ.get("FMRMATCH_LOG_DIR", PROJECT_ROOT / "logs"))
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB per file
LOG_BACKUP_COUNT = 5  # Keep 5 backup files

# ============================================================================
# SERVER CONFIGURATION
# ============================================================================

# Network
HOST = os.environ.get("FMRMATCH_HOST", "0.0.0.0")
PORT_HTTPS = _env_int("FMRMATCH_PORT_HTTPS", 8443)
PORT_HTTP = _env_int("FMRMATCH_PORT_HTTP", 8080)

# CORS
CORS_ORIGINS: List[str] = ["*"]  # Allow all origins (adjust for production)
CORS_ALLOW_CREDENTIALS = True

# Request limits
MAX_GALLERY_RECORDS = 10000  # Records accepted in one /api/match request

# ============================================================================
# MATCHING
# ============================================================================

MATCH_THRESHOLD = _env_int("FMRMATCH_THRESHOLD", DEFAULT_THRESHOLD)

# ============================================================================
# MULTIPROCESSING
# ============================================================================

# ProcessPool configuration (0 = run engine calls on the default thread executor)
MAX_WORKERS = _env_int("FMRMATCH_MAX_WORKERS", 4)

# Worker timeout
SEARCH_TIMEOUT = 30  # seconds per match / verify request

# Verbose output
VERBOSE = _env_bool("FMRMATCH_VERBOSE", False)
