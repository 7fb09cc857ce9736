"""
Capitan configuration.

All settings in one place.
Each can be overridden via environment variables.
"""

import os

# ============================================================
# CONFIG SOURCE
# ============================================================

CONFIG_COMMAND = os.environ.get("CAPITAN_CONFIG_CMD", "./capitan.cfg.sh")
CONFIG_TIMEOUT = int(os.environ.get("CAPITAN_CONFIG_TIMEOUT", "60"))  # seconds
DEFAULT_PROJECT_SEPARATOR = os.environ.get("CAPITAN_PROJECT_SEPARATOR", "_")

# ============================================================
# CONTAINER LABELS
# ============================================================

LABEL_PREFIX = os.environ.get("CAPITAN_LABEL_PREFIX", "capitan")
LABEL_MANAGED = f"{LABEL_PREFIX}.managed"
LABEL_PROJECT = f"{LABEL_PREFIX}.project"
LABEL_SERVICE_TYPE = f"{LABEL_PREFIX}.service_type"
LABEL_INSTANCE = f"{LABEL_PREFIX}.instance"
LABEL_RUN_SIGNATURE = f"{LABEL_PREFIX}.run_signature"

# ============================================================
# TIMEOUTS
# ============================================================

CONTAINER_STOP_TIMEOUT = int(os.environ.get("CAPITAN_STOP_TIMEOUT", "10"))  # seconds
DEFAULT_KILL_SIGNAL = os.environ.get("CAPITAN_KILL_SIGNAL", "SIGKILL")

# ============================================================
# HOOKS
# ============================================================

HOOK_SHELL = os.environ.get("CAPITAN_HOOK_SHELL", "/bin/sh")

# ============================================================
# LOGGING
# ============================================================

LOG_LEVEL = os.environ.get("CAPITAN_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(message)s"
DEBUG_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
