# leadflow/core/config.py
import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Seconds a single store call may run before it is cancelled
STORE_TIMEOUT = float(os.getenv("LEADFLOW_STORE_TIMEOUT", "10"))

DEFAULT_LIST_LIMIT = int(os.getenv("LEADFLOW_DEFAULT_LIST_LIMIT", "50"))
MAX_LIST_LIMIT = int(os.getenv("LEADFLOW_MAX_LIST_LIMIT", "100"))

# Upper bound on leads pulled from the unassigned pool when no cap is given
DEFAULT_DISTRIBUTION_BATCH = 100

DISTRIBUTION_LOCK_TIMEOUT = float(os.getenv("LEADFLOW_DISTRIBUTION_LOCK_TIMEOUT", "30"))
DISTRIBUTION_LOCK_WAIT = float(os.getenv("LEADFLOW_DISTRIBUTION_LOCK_WAIT", "5"))

METRICS_CACHE_TTL = int(os.getenv("LEADFLOW_METRICS_CACHE_TTL", "300"))
