API_GROUP = 'kubedb.com'
API_VERSION = 'v1alpha2'
CATALOG_API_GROUP = 'catalog.kubedb.com'
CATALOG_API_VERSION = 'v1alpha1'

RESOURCE_KIND_POSTGRES = 'Postgres'
RESOURCE_SINGULAR_POSTGRES = 'postgres'
RESOURCE_PLURAL_POSTGRES = 'postgreses'

# Labels establishing the relationship between a Postgres resource and its children
LABEL_NAME = 'app.kubernetes.io/name'
LABEL_INSTANCE = 'app.kubernetes.io/instance'
LABEL_MANAGED_BY = 'app.kubernetes.io/managed-by'
LABEL_ROLE = 'kubedb.com/role'

MANAGED_BY = 'kubedb.com'

ROLE_PRIMARY = 'primary'
ROLE_STANDBY = 'standby'
ROLE_STATS = 'stats'

# Name suffixes of the managed resources
GOVERNING_SERVICE_SUFFIX = 'pods'
STANDBY_SERVICE_SUFFIX = 'standby'
STATS_SERVICE_SUFFIX = 'stats'

DATABASE_NAME_PREFIX = 'kubedb'

DATABASE_PORT = 5432
DATABASE_PORT_NAME = 'api'
PRIMARY_SERVICE_PORT_NAME = 'api'
STANDBY_SERVICE_PORT_NAME = 'api'

EXPORTER_CONTAINER_NAME = 'exporter'
EXPORTER_PORT_NAME = 'metrics'
EXPORTER_DEFAULT_PORT = 56790
EXPORTER_METRICS_PATH = '/metrics'
VENDOR_PROMETHEUS = 'prometheus.io'

STORAGE_TYPE_DURABLE = 'Durable'
STORAGE_TYPE_EPHEMERAL = 'Ephemeral'

STANDBY_MODE_WARM = 'warm'
STREAMING_MODE_ASYNCHRONOUS = 'asynchronous'

CONDITION_DATA_RESTORED = 'DataRestored'

# Keys of the referenced basic-auth secret
SECRET_USERNAME_KEY = 'username'
SECRET_PASSWORD_KEY = 'password'

ENV_POSTGRES_USER = 'POSTGRES_USER'
ENV_POSTGRES_PASSWORD = 'POSTGRES_PASSWORD'
ENV_LEASE_DURATION = 'LEASE_DURATION'
ENV_RENEW_DEADLINE = 'RENEW_DEADLINE'
ENV_RETRY_PERIOD = 'RETRY_PERIOD'
ENV_ANALYTICS_CLIENT_ID = 'APPSCODE_ANALYTICS_CLIENT_ID'

ARCHIVER_WAL_G = 'wal-g'

# Volumes and their mount points in the database container
VOLUME_ARCHIVE_SECRET = 'wal-g-archive'
VOLUME_ARCHIVE_SECRET_PATH = '/srv/wal-g/archive/secrets'
VOLUME_RESTORE_SECRET = 'wal-g-restore'
VOLUME_RESTORE_SECRET_PATH = '/srv/wal-g/restore/secrets'
VOLUME_INIT_SCRIPT = 'initial-script'
VOLUME_INIT_SCRIPT_PATH = '/var/initdb'
VOLUME_SHARED_MEMORY = 'shared-memory'
VOLUME_SHARED_MEMORY_PATH = '/dev/shm'
VOLUME_LOCAL_ARCHIVE = 'local-archive'
VOLUME_LOCAL_INIT = 'local-init'
VOLUME_DATA = 'data'
VOLUME_DATA_PATH = '/var/pv'
VOLUME_CUSTOM_CONFIG = 'custom-config'
VOLUME_CUSTOM_CONFIG_PATH = '/etc/config'

ANNOTATION_STORAGE_CLASS = 'volume.beta.kubernetes.io/storage-class'

EVENT_TYPE_NORMAL = 'Normal'
EVENT_TYPE_WARNING = 'Warning'
EVENT_REASON_SUCCESSFUL = 'Successful'
EVENT_REASON_FAILED = 'Failed'
