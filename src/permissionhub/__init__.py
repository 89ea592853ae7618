from .config import HubConfig, LogLevel, load_config_from_env
from .exceptions import (
    AtomicityError,
    ConfigurationError,
    NotFoundError,
    PermissionHubError,
    StorageError,
    ValidationFailure,
    get_http_status,
)
from .models import (
    Permission,
    PermissionCreate,
    PermissionRequest,
    PermissionRequestCreate,
    PermissionType,
    PermissionUpdate,
)
from .store import PermissionStore
from .workflow import RequestApprovalWorkflow
from .accounting import PermissionStatus, UsageView, derive_usage
from .scoring import (
    DEFAULT_HEALTH_FACTORS,
    HealthFactor,
    PermissionCounts,
    calculate_score,
    count_permissions,
    recompute_factors,
)
from .badges import DEFAULT_BADGES, Badge, BadgeCondition, BadgeKind, evaluate_badges
from .kv import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
    create_kv_store,
)
from .engine import HealthEngine, HealthSnapshot
from .service import PermissionService, build_service
from .sweeper import start_expiry_sweeper, sweep_expired
from .logging import (
    safe_preview,
    redact_secrets,
    HubFormatter,
    HubLoggerAdapter,
    setup_logging,
    get_hub_logger,
)

__all__ = [
    'HubConfig',
    'LogLevel',
    'load_config_from_env',
    'PermissionHubError',
    'ConfigurationError',
    'NotFoundError',
    'ValidationFailure',
    'AtomicityError',
    'StorageError',
    'get_http_status',
    'Permission',
    'PermissionCreate',
    'PermissionRequest',
    'PermissionRequestCreate',
    'PermissionType',
    'PermissionUpdate',
    'PermissionStore',
    'RequestApprovalWorkflow',
    'PermissionStatus',
    'UsageView',
    'derive_usage',
    'DEFAULT_HEALTH_FACTORS',
    'HealthFactor',
    'PermissionCounts',
    'calculate_score',
    'count_permissions',
    'recompute_factors',
    'DEFAULT_BADGES',
    'Badge',
    'BadgeCondition',
    'BadgeKind',
    'evaluate_badges',
    'KeyValueStore',
    'InMemoryKeyValueStore',
    'JsonFileKeyValueStore',
    'RedisKeyValueStore',
    'create_kv_store',
    'HealthEngine',
    'HealthSnapshot',
    'PermissionService',
    'build_service',
    'start_expiry_sweeper',
    'sweep_expired',
    'safe_preview',
    'redact_secrets',
    'HubFormatter',
    'HubLoggerAdapter',
    'setup_logging',
    'get_hub_logger',
]
