import copy
import posixpath
from typing import Dict, Any, Optional, NamedTuple, Union, List, Tuple, Callable

from pgoperator.k8s_operator.constants import API_GROUP, API_VERSION, RESOURCE_KIND_POSTGRES, LABEL_NAME, \
    LABEL_INSTANCE, LABEL_MANAGED_BY, MANAGED_BY, RESOURCE_PLURAL_POSTGRES, GOVERNING_SERVICE_SUFFIX, \
    STANDBY_SERVICE_SUFFIX, STATS_SERVICE_SUFFIX, LABEL_ROLE, ROLE_STATS, EXPORTER_DEFAULT_PORT, \
    EXPORTER_METRICS_PATH, STORAGE_TYPE_DURABLE, STORAGE_TYPE_EPHEMERAL, DATABASE_NAME_PREFIX, \
    CONDITION_DATA_RESTORED
from pgoperator.k8s_operator.utils import key_get

# Field names in the Postgres resource
K8S_POSTGRES_SPEC_VERSION = 'version'
K8S_POSTGRES_SPEC_REPLICAS = 'replicas'
K8S_POSTGRES_SPEC_STANDBY_MODE = 'standbyMode'
K8S_POSTGRES_SPEC_STREAMING_MODE = 'streamingMode'
K8S_POSTGRES_SPEC_LEADER_ELECTION = 'leaderElection'
K8S_POSTGRES_SPEC_AUTH_SECRET = 'authSecret'
K8S_POSTGRES_SPEC_STORAGE_TYPE = 'storageType'
K8S_POSTGRES_SPEC_STORAGE = 'storage'
K8S_POSTGRES_SPEC_ARCHIVER = 'archiver'
K8S_POSTGRES_SPEC_INIT = 'init'
K8S_POSTGRES_SPEC_CONFIG_SECRET = 'configSecret'
K8S_POSTGRES_SPEC_MONITOR = 'monitor'
K8S_POSTGRES_SPEC_POD_TEMPLATE = 'podTemplate'
K8S_POSTGRES_SPEC_SERVICE_TEMPLATE = 'serviceTemplate'
K8S_POSTGRES_SPEC_REPLICA_SERVICE_TEMPLATE = 'replicaServiceTemplate'

K8S_BACKEND_STORAGE_SECRET_NAME = 'storageSecretName'
K8S_LOCAL_MOUNT_PATH = 'mountPath'
K8S_LOCAL_SUB_PATH = 'subPath'
K8S_INIT_SCRIPT_PATH = 'scriptPath'


class S3Backend(NamedTuple):
    bucket: str
    prefix: str = ''
    endpoint: str = ''
    region: str = ''


class GCSBackend(NamedTuple):
    bucket: str
    prefix: str = ''


class AzureBackend(NamedTuple):
    container: str
    prefix: str = ''


class SwiftBackend(NamedTuple):
    container: str
    prefix: str = ''


class LocalBackend(NamedTuple):
    mount_path: str
    sub_path: str = ''
    volume_source: Dict[str, Any] = {}


StorageBackend = Union[S3Backend, GCSBackend, AzureBackend, SwiftBackend, LocalBackend]


def _parse_s3(spec: Dict[str, Any]) -> S3Backend:
    return S3Backend(bucket=spec.get('bucket', ''),
                     prefix=spec.get('prefix', ''),
                     endpoint=spec.get('endpoint', ''),
                     region=spec.get('region', ''))


def _parse_gcs(spec: Dict[str, Any]) -> GCSBackend:
    return GCSBackend(bucket=spec.get('bucket', ''), prefix=spec.get('prefix', ''))


def _parse_azure(spec: Dict[str, Any]) -> AzureBackend:
    return AzureBackend(container=spec.get('container', ''), prefix=spec.get('prefix', ''))


def _parse_swift(spec: Dict[str, Any]) -> SwiftBackend:
    return SwiftBackend(container=spec.get('container', ''), prefix=spec.get('prefix', ''))


def _parse_local(spec: Dict[str, Any]) -> LocalBackend:
    volume_source = {
        key: copy.deepcopy(value)
        for key, value in spec.items()
        if key not in (K8S_LOCAL_MOUNT_PATH, K8S_LOCAL_SUB_PATH)
    }
    return LocalBackend(mount_path=spec.get(K8S_LOCAL_MOUNT_PATH, ''),
                        sub_path=spec.get(K8S_LOCAL_SUB_PATH, ''),
                        volume_source=volume_source)


# Order matters: the first populated key wins
_BACKEND_PARSERS: Tuple[Tuple[str, Callable[[Dict[str, Any]], StorageBackend]], ...] = (
    ('s3', _parse_s3),
    ('gcs', _parse_gcs),
    ('azure', _parse_azure),
    ('swift', _parse_swift),
    ('local', _parse_local),
)


def parse_backend(spec: Optional[Dict[str, Any]]) -> Optional[StorageBackend]:
    if not spec:
        return None
    for key, parser in _BACKEND_PARSERS:
        if spec.get(key) is not None:
            return parser(spec[key])
    return None


class ArchiverSpec(NamedTuple):
    backend: Optional[StorageBackend]
    secret_name: str


class PITRTarget(NamedTuple):
    inclusive: bool
    time: str = ''
    timeline: str = ''
    xid: str = ''


class WALSource(NamedTuple):
    backend: Optional[StorageBackend]
    secret_name: str
    pitr: Optional[PITRTarget] = None


class LeaderElection(NamedTuple):
    lease_duration_seconds: int
    renew_deadline_seconds: int
    retry_period_seconds: int


class MonitorSpec(NamedTuple):
    agent: str
    port: int = EXPORTER_DEFAULT_PORT
    args: List[str] = []
    env: List[Dict[str, Any]] = []
    resources: Dict[str, Any] = {}
    security_context: Optional[Dict[str, Any]] = None

    @property
    def vendor(self) -> str:
        return self.agent.split('/', 1)[0]


class VersionInfo(NamedTuple):
    db_image: str
    exporter_image: str


def _parse_archiver(spec: Optional[Dict[str, Any]]) -> Optional[ArchiverSpec]:
    storage = (spec or {}).get('storage')
    if storage is None:
        return None
    return ArchiverSpec(backend=parse_backend(storage), secret_name=storage.get(K8S_BACKEND_STORAGE_SECRET_NAME, ''))


def _parse_wal_source(spec: Optional[Dict[str, Any]]) -> Optional[WALSource]:
    if spec is None:
        return None

    pitr = None
    if spec.get('pitr') is not None:
        pitr_spec = spec['pitr']
        pitr = PITRTarget(inclusive=bool(pitr_spec.get('targetInclusive', False)),
                          time=pitr_spec.get('targetTime', ''),
                          timeline=pitr_spec.get('targetTimeline', ''),
                          xid=pitr_spec.get('targetXID', ''))

    return WALSource(backend=parse_backend(spec),
                     secret_name=spec.get(K8S_BACKEND_STORAGE_SECRET_NAME, ''),
                     pitr=pitr)


def _parse_leader_election(spec: Optional[Dict[str, Any]]) -> Optional[LeaderElection]:
    if spec is None:
        return None
    return LeaderElection(lease_duration_seconds=int(spec.get('leaseDurationSeconds', 0)),
                          renew_deadline_seconds=int(spec.get('renewDeadlineSeconds', 0)),
                          retry_period_seconds=int(spec.get('retryPeriodSeconds', 0)))


def _parse_monitor(spec: Optional[Dict[str, Any]]) -> Optional[MonitorSpec]:
    if spec is None:
        return None
    exporter = key_get(spec, 'prometheus.exporter', {})
    return MonitorSpec(agent=spec.get('agent', ''),
                       port=int(exporter.get('port', EXPORTER_DEFAULT_PORT)),
                       args=list(exporter.get('args', [])),
                       env=copy.deepcopy(exporter.get('env', [])),
                       resources=copy.deepcopy(exporter.get('resources', {})),
                       security_context=copy.deepcopy(exporter.get('securityContext')))


class DatabaseSpec:
    """The declared state of one Postgres resource.

    Built from the raw resource body on every reconciliation. Sub-structures that are passed through to child
    resources verbatim (pod and service templates, storage) stay plain dictionaries, backends and other
    structures the operator interprets are parsed into named tuples.
    """

    def __init__(self, body: Dict[str, Any]) -> None:
        body = copy.deepcopy(body)
        metadata = body.get('metadata', {})
        spec = body.get('spec', {}) or {}

        self.api_version: str = body.get('apiVersion', f'{API_GROUP}/{API_VERSION}')
        self.kind: str = body.get('kind', RESOURCE_KIND_POSTGRES)
        self.name: str = metadata['name']
        self.namespace: str = metadata.get('namespace', 'default')
        self.uid: str = metadata.get('uid', '')
        self.labels: Dict[str, str] = metadata.get('labels', {}) or {}

        self.version: str = spec.get(K8S_POSTGRES_SPEC_VERSION, '')
        replicas = spec.get(K8S_POSTGRES_SPEC_REPLICAS)
        self.replicas: int = 1 if replicas is None else int(replicas)
        self.standby_mode: Optional[str] = spec.get(K8S_POSTGRES_SPEC_STANDBY_MODE)
        self.streaming_mode: Optional[str] = spec.get(K8S_POSTGRES_SPEC_STREAMING_MODE)
        self.leader_election = _parse_leader_election(spec.get(K8S_POSTGRES_SPEC_LEADER_ELECTION))
        self.auth_secret_name: str = key_get(spec, f'{K8S_POSTGRES_SPEC_AUTH_SECRET}.name', '')

        self.storage_type: str = spec.get(K8S_POSTGRES_SPEC_STORAGE_TYPE) or STORAGE_TYPE_DURABLE
        self.storage: Optional[Dict[str, Any]] = spec.get(K8S_POSTGRES_SPEC_STORAGE)

        self.archiver = _parse_archiver(spec.get(K8S_POSTGRES_SPEC_ARCHIVER))

        init = spec.get(K8S_POSTGRES_SPEC_INIT) or {}
        self.init_wal = _parse_wal_source(init.get('postgresWAL'))
        self.init_script: Optional[Dict[str, Any]] = None
        if init.get('script') is not None:
            self.init_script = {key: value for key, value in init['script'].items() if key != K8S_INIT_SCRIPT_PATH}

        self.config_secret_name: Optional[str] = key_get(spec, f'{K8S_POSTGRES_SPEC_CONFIG_SECRET}.name', None)
        self.monitor = _parse_monitor(spec.get(K8S_POSTGRES_SPEC_MONITOR))

        pod_template = spec.get(K8S_POSTGRES_SPEC_POD_TEMPLATE) or {}
        self.pod_spec: Dict[str, Any] = pod_template.get('spec') or {}
        self.pod_annotations: Dict[str, str] = key_get(pod_template, 'metadata.annotations', {})
        self.controller_annotations: Dict[str, str] = key_get(pod_template, 'controller.annotations', {})

        self.service_template: Dict[str, Any] = spec.get(K8S_POSTGRES_SPEC_SERVICE_TEMPLATE) or {}
        self.replica_service_template: Dict[str, Any] = spec.get(K8S_POSTGRES_SPEC_REPLICA_SERVICE_TEMPLATE) or {}

        self.conditions: List[Dict[str, Any]] = key_get(body, 'status.conditions', [])

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> 'DatabaseSpec':
        return cls(body)

    @property
    def offshoot_name(self) -> str:
        return self.name

    @property
    def service_name(self) -> str:
        return self.offshoot_name

    @property
    def governing_service_name(self) -> str:
        return f'{self.offshoot_name}-{GOVERNING_SERVICE_SUFFIX}'

    @property
    def standby_service_name(self) -> str:
        return f'{self.offshoot_name}-{STANDBY_SERVICE_SUFFIX}'

    @property
    def stats_service_name(self) -> str:
        return f'{self.offshoot_name}-{STATS_SERVICE_SUFFIX}'

    @property
    def stats_path(self) -> str:
        return EXPORTER_METRICS_PATH

    @property
    def is_ephemeral(self) -> bool:
        return self.storage_type == STORAGE_TYPE_EPHEMERAL

    def offshoot_selectors(self) -> Dict[str, str]:
        return {
            LABEL_NAME: f'{RESOURCE_PLURAL_POSTGRES}.{API_GROUP}',
            LABEL_INSTANCE: self.name,
        }

    def offshoot_labels(self) -> Dict[str, str]:
        labels = dict(self.labels)
        labels.update(self.offshoot_selectors())
        labels[LABEL_MANAGED_BY] = MANAGED_BY
        return labels

    def stats_service_labels(self) -> Dict[str, str]:
        labels = self.offshoot_labels()
        labels[LABEL_ROLE] = ROLE_STATS
        return labels

    def owner_reference(self) -> Dict[str, Any]:
        return {
            'apiVersion': self.api_version,
            'kind': self.kind,
            'name': self.name,
            'uid': self.uid,
            'controller': True,
            'blockOwnerDeletion': True,
        }

    def as_subject(self) -> Dict[str, Any]:
        return {
            'apiVersion': self.api_version,
            'kind': self.kind,
            'metadata': {
                'name': self.name,
                'namespace': self.namespace,
                'uid': self.uid,
            },
        }

    def has_condition(self, condition_type: str) -> bool:
        for condition in self.conditions:
            if condition.get('type') == condition_type and str(condition.get('status')) == 'True':
                return True
        return False

    @property
    def data_restored(self) -> bool:
        return self.has_condition(CONDITION_DATA_RESTORED)

    def wal_data_dir(self) -> str:
        prefix = ''
        if self.archiver is not None and isinstance(self.archiver.backend,
                                                    (S3Backend, GCSBackend, AzureBackend, SwiftBackend)):
            prefix = self.archiver.backend.prefix
        return posixpath.normpath(posixpath.join(prefix, DATABASE_NAME_PREFIX, self.namespace, self.name, 'archive'))
