# vsprov/constants.py
"""
Central location for constants used across the application.
"""

# ==============================================================================
# DATABASE AND CORE CONSTANTS
# ==============================================================================
DB_NAME = "vsprov_db"
STATE_COLLECTION = "state"
OPERATION_LOG_COLLECTION = "operation_logs"
LOG_COLLECTION = "logs"

STATE_BACKEND_FILE = "file"
STATE_BACKEND_MONGO = "mongo"
DEFAULT_STATE_FILE = "vsprov.tfstate.json"
DEFAULT_CONFIG_FILE = "main.tf.json"
STATE_VERSION = 1

# ==============================================================================
# PROVIDER DEFAULTS
# ==============================================================================
DEFAULT_API_TIMEOUT_MINUTES = 5
REST_TASK_POLL_INTERVAL = 5

# ==============================================================================
# POLLING
# ==============================================================================
NAMESPACE_POLL_INTERVAL = 15
NAMESPACE_CREATE_TIMEOUT = 120
SUPERVISOR_POLL_INTERVAL = 60
SUPERVISOR_TIMEOUT = 60 * 60
SUPERVISOR_MAX_ERROR_POLLS = 4
NETWORK_RETRY_INTERVAL_MS = 500

# ==============================================================================
# ALARMS
# ==============================================================================
ALARM_REPORTING_FREQUENCY = 300
ALARM_TOLERANCE_RANGE = 0

# ==============================================================================
# COMPUTE CLUSTER DEFAULTS
# ==============================================================================
DEFAULT_HOST_CLUSTER_EXIT_TIMEOUT = 3600
DEFAULT_PERFORMANCE_TOLERANCE = 100
DEFAULT_RESOURCE_PERCENTAGE = 100
DEFAULT_SLOT_EXPLICIT_CPU = 32
DEFAULT_SLOT_EXPLICIT_MEMORY = 100

# Keys that do not contribute to the cluster configuration spec.
CLUSTER_NON_CONFIG_KEYS = (
    "name",
    "datacenter_id",
    "host_system_ids",
    "folder",
    "host_cluster_exit_timeout",
    "force_evacuate_on_destroy",
    "host_managed",
    "host_image",
    "resource_pool_id",
)
