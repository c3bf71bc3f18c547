"""
================================================================================
FILE: access_bridge/config/constants.py
================================================================================

PURPOSE:
    Application-wide constants. Immutable defaults shared by the settings layer
    and by components constructed directly (tests, embedding).

CONSTANT CATEGORIES:
    1. API Configuration
    2. Health Monitor defaults
    3. Circuit Breaker defaults
    4. Retry defaults
    5. Event Translator defaults
    6. Mapping persistence defaults
    7. Webhook

KEY FACTS:
    - All durations are SECONDS (floats)
    - Never modify constants at runtime
"""

# ================================================================================
# API CONFIGURATION
# ================================================================================

API_TITLE = "Access Bridge"
API_DESCRIPTION = "Bridges a local door controller and a cloud mobile-credential service"
API_PREFIX = "/api"
WEBHOOK_PREFIX = "/webhook"
API_KEY_HEADER = "X-API-Key"

DEFAULT_SERVER_HOST = "127.0.0.1"
DEFAULT_SERVER_PORT = 9090

# ================================================================================
# HEALTH MONITOR
# ================================================================================

HEALTH_CHECK_INTERVAL_SECONDS = 30.0
HEALTH_FAILURE_THRESHOLD = 3
HEALTH_CHECK_TIMEOUT_SECONDS = 5.0

# ================================================================================
# CIRCUIT BREAKER
# ================================================================================

CIRCUIT_BREAKER_FAILURE_THRESHOLD = 5
CIRCUIT_BREAKER_SUCCESS_THRESHOLD = 2
CIRCUIT_BREAKER_TIMEOUT_SECONDS = 60.0

# ================================================================================
# RETRY
# ================================================================================

RETRY_MAX_ATTEMPTS = 3
RETRY_INITIAL_DELAY_SECONDS = 1.0
RETRY_MAX_DELAY_SECONDS = 10.0
RETRY_BACKOFF_MULTIPLIER = 2.0
RETRY_JITTER_RATIO = 0.25

# ================================================================================
# EVENT TRANSLATOR
# ================================================================================

EVENT_DEDUP_WINDOW_SECONDS = 5.0
EVENT_MAX_QUEUE_SIZE = 1000
EVENT_PROCESSING_DELAY_SECONDS = 1.0
EVENT_BATCH_SIZE = 10
EVENT_MAX_ATTEMPTS = 3
EVENT_EVICTION_RATIO = 0.1

# ================================================================================
# MAPPING PERSISTENCE
# ================================================================================

MAPPINGS_FILE = "./data/mappings.json"
MAPPING_SAVE_DELAY_SECONDS = 5.0

# ================================================================================
# WEBHOOK
# ================================================================================

WEBHOOK_SIGNATURE_PREFIX = "sha256="
WEBHOOK_UNLOCK_EVENTS = frozenset({"door.unlock", "lock.unlock"})

# ================================================================================
# LOGGING
# ================================================================================

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_BUFFER_SIZE = 1000
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 5
