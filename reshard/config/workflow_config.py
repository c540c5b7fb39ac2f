"""
Reshard Phase Configuration

Environment-based configuration for phase execution
"""

import os


class ReshardConfig:
    """Reshard phase engine configuration settings"""

    # Redis Settings
    REDIS_HOST = os.getenv('REDIS_HOST', 'redis')
    REDIS_PORT = int(os.getenv('REDIS_PORT', 6379))
    REDIS_DB = int(os.getenv('REDIS_DB', 1))  # DB 1 = reshard state
    REDIS_PASSWORD = os.getenv('REDIS_PASSWORD', None)

    # Collaborator Services
    SAPI_URL = os.getenv('SAPI_URL', 'http://sapi.local')
    IMGAPI_URL = os.getenv('IMGAPI_URL', 'http://imgapi.local')
    EXEC_URL = os.getenv('EXEC_URL', 'http://exec.local')
    HTTP_TIMEOUT = float(os.getenv('HTTP_TIMEOUT', 30))

    # Base URL remote scripts use to reach the progress endpoint
    PROGRESS_BASE_URL = os.getenv('PROGRESS_BASE_URL', 'http://localhost:8000')

    # Remote Execution Settings
    EXEC_TRANSPORT_TIMEOUT = float(os.getenv('EXEC_TRANSPORT_TIMEOUT', 300))  # Per exec call
    STALL_TIMEOUT = float(os.getenv('STALL_TIMEOUT', 600))  # Silence after first progress message
    WATCHDOG_INTERVAL = float(os.getenv('WATCHDOG_INTERVAL', 1))

    # Rolling Restart Settings
    RESTART_RETRY_DELAY = float(os.getenv('RESTART_RETRY_DELAY', 15))
    RESTART_MAX_ATTEMPTS = int(os.getenv('RESTART_MAX_ATTEMPTS', 20))

    # Names in the storage cluster
    APPLICATION_NAME = os.getenv('APPLICATION_NAME', 'manta')
    ROUTING_SERVICE_NAME = os.getenv('ROUTING_SERVICE_NAME', 'electric-moray')
    HASH_RING_IMAGE_NAME = os.getenv('HASH_RING_IMAGE_NAME', 'manta-hash-ring')
    PLAN_TAG = os.getenv('PLAN_TAG', 'manta_reshard_plan')
    INDEX_MAP_PATH = os.getenv(
        'INDEX_MAP_PATH', '/opt/smartdc/electric-moray/etc/index-map.json'
    )

    # TTL Settings
    STATE_TTL_DAYS = int(os.getenv('STATE_TTL_DAYS', 7))

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
