"""Centralized constants for Compose Updater."""

APP_NAME = "compose-updater"

# Scheduler entries owned by this tool carry this marker
CRON_MARKER = "# compose-updater-managed"

# Lock key guarding registry mutation and scheduler rebuilds
GLOBAL_LOCK_KEY = "global"

# Health checks (seconds)
HEALTH_POLL_INTERVAL_SECONDS = 5
DEFAULT_HEALTH_TIMEOUT = 60

# Schedules
DEFAULT_INTERVAL_HOURS = 12
MAX_INTERVAL_HOURS = 23

# Hooks
PRE_UPDATE_HOOK = "pre-update.sh"
POST_UPDATE_HOOK = "post-update.sh"

# Compose manifest names, in lookup order
COMPOSE_FILENAMES = (
    "docker-compose.yml",
    "docker-compose.yaml",
    "compose.yml",
    "compose.yaml",
)

# Webhook
NOTIFY_COLOR_SUCCESS = "#36a64f"
NOTIFY_COLOR_FAILURE = "#ff0000"
NOTIFY_TIMEOUT_SECONDS = 10

DEFAULT_LOG_LINES = 50
