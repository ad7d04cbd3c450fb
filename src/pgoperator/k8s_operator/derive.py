"""Derivation of child resource fragments from a DatabaseSpec.

Nothing in here talks to the API server. Every function returns freshly built dictionaries, callers are free to
modify them.
"""
import copy
import logging
import posixpath
from typing import Any, Dict, List, NamedTuple, Optional

from pgoperator.config import Config
from pgoperator.k8s_operator.constants import ENV_POSTGRES_USER, ENV_POSTGRES_PASSWORD, SECRET_USERNAME_KEY, \
    SECRET_PASSWORD_KEY, STANDBY_MODE_WARM, STREAMING_MODE_ASYNCHRONOUS, ENV_LEASE_DURATION, ENV_RENEW_DEADLINE, \
    ENV_RETRY_PERIOD, ARCHIVER_WAL_G, VOLUME_ARCHIVE_SECRET, VOLUME_ARCHIVE_SECRET_PATH, VOLUME_RESTORE_SECRET, \
    VOLUME_RESTORE_SECRET_PATH, VOLUME_INIT_SCRIPT, VOLUME_INIT_SCRIPT_PATH, VOLUME_SHARED_MEMORY, \
    VOLUME_SHARED_MEMORY_PATH, VOLUME_LOCAL_ARCHIVE, VOLUME_LOCAL_INIT, VOLUME_DATA, VOLUME_DATA_PATH, \
    VOLUME_CUSTOM_CONFIG, VOLUME_CUSTOM_CONFIG_PATH, ANNOTATION_STORAGE_CLASS, RESOURCE_SINGULAR_POSTGRES, \
    DATABASE_PORT, DATABASE_PORT_NAME, ENV_ANALYTICS_CLIENT_ID, EXPORTER_CONTAINER_NAME, EXPORTER_PORT_NAME, \
    VENDOR_PROMETHEUS
from pgoperator.k8s_operator.database import DatabaseSpec, S3Backend, GCSBackend, AzureBackend, SwiftBackend, \
    LocalBackend, StorageBackend, WALSource, VersionInfo
from pgoperator.k8s_operator.upsert import upsert_env_vars
from pgoperator.k8s_operator.utils import key_get

# Endpoints ending in this suffix belong to AWS itself, everything else is an S3 compatible service
AWS_S3_ENDPOINT_SUFFIX = '.amazonaws.com'

_LOG_LEVEL_TO_VERBOSITY = {'DEBUG': 5, 'INFO': 3, 'WARNING': 2, 'ERROR': 1}

module_logger = logging.getLogger(__name__)


class DerivedVolume(NamedTuple):
    # None when the volume is provided by a volume claim template
    volume: Optional[Dict[str, Any]]
    mount: Dict[str, Any]


def env_var(name: str, value: str) -> Dict[str, Any]:
    return {'name': name, 'value': value}


def _secret_key_env_var(name: str, secret_name: str, key: str) -> Dict[str, Any]:
    return {'name': name, 'valueFrom': {'secretKeyRef': {'name': secret_name, 'key': key}}}


def derive_base_env(db: DatabaseSpec) -> List[Dict[str, Any]]:
    return [
        {
            'name': 'NAMESPACE',
            'valueFrom': {
                'fieldRef': {
                    'apiVersion': 'v1',
                    'fieldPath': 'metadata.namespace'
                }
            }
        },
        env_var('PRIMARY_HOST', db.service_name),
        _secret_key_env_var(ENV_POSTGRES_USER, db.auth_secret_name, SECRET_USERNAME_KEY),
        _secret_key_env_var(ENV_POSTGRES_PASSWORD, db.auth_secret_name, SECRET_PASSWORD_KEY),
    ]


def derive_replication_env(db: DatabaseSpec) -> List[Dict[str, Any]]:
    standby_mode = db.standby_mode if db.standby_mode else STANDBY_MODE_WARM
    streaming_mode = db.streaming_mode if db.streaming_mode else STREAMING_MODE_ASYNCHRONOUS

    env = [env_var('STANDBY', standby_mode.lower()), env_var('STREAMING', streaming_mode.lower())]

    if db.leader_election is not None:
        env.extend([
            env_var(ENV_LEASE_DURATION, str(db.leader_election.lease_duration_seconds)),
            env_var(ENV_RENEW_DEADLINE, str(db.leader_election.renew_deadline_seconds)),
            env_var(ENV_RETRY_PERIOD, str(db.leader_election.retry_period_seconds)),
        ])

    return env


def _backend_env(prefix: str, backend: Optional[StorageBackend], location: str) -> List[Dict[str, Any]]:
    if isinstance(backend, S3Backend):
        env = [env_var(f'{prefix}_S3_PREFIX', f's3://{backend.bucket}/{location}')]
        if backend.endpoint and not backend.endpoint.endswith(AWS_S3_ENDPOINT_SUFFIX):
            env.append(env_var(f'{prefix}_S3_ENDPOINT', backend.endpoint))
        if backend.region:
            env.append(env_var(f'{prefix}_S3_REGION', backend.region))
        return env
    elif isinstance(backend, GCSBackend):
        return [env_var(f'{prefix}_GS_PREFIX', f'gs://{backend.bucket}/{location}')]
    elif isinstance(backend, AzureBackend):
        return [env_var(f'{prefix}_AZ_PREFIX', f'azure://{backend.container}/{location}')]
    elif isinstance(backend, SwiftBackend):
        return [env_var(f'{prefix}_SWIFT_PREFIX', f'swift://{backend.container}/{location}')]
    elif isinstance(backend, LocalBackend):
        return [env_var(f'{prefix}_FILE_PREFIX', location)]
    return []


def derive_archive_env(db: DatabaseSpec) -> List[Dict[str, Any]]:
    if db.archiver is None:
        return []

    backend = db.archiver.backend
    if isinstance(backend, LocalBackend):
        location = backend.mount_path
    else:
        location = db.wal_data_dir()

    return [env_var('ARCHIVE', ARCHIVER_WAL_G)] + _backend_env('ARCHIVE', backend, location)


def derive_restore_env(source: WALSource) -> List[Dict[str, Any]]:
    backend = source.backend
    if isinstance(backend, LocalBackend):
        location = posixpath.join('/', backend.mount_path, backend.sub_path)
    elif backend is not None:
        location = backend.prefix
    else:
        location = ''

    env = [env_var('RESTORE', 'true')] + _backend_env('RESTORE', backend, location)

    pitr = source.pitr
    if pitr is not None:
        env.extend([env_var('PITR', 'true'), env_var('TARGET_INCLUSIVE', 'true' if pitr.inclusive else 'false')])
        if pitr.time:
            env.append(env_var('TARGET_TIME', pitr.time))
        if pitr.timeline:
            env.append(env_var('TARGET_TIMELINE', pitr.timeline))
        if pitr.xid:
            env.append(env_var('TARGET_XID', pitr.xid))

    return env


def derive_env(db: DatabaseSpec) -> List[Dict[str, Any]]:
    """Returns the environment of the database container.

    Later entries replace earlier ones with the same name in place, so user supplied variables always win.
    """
    env = derive_base_env(db) + derive_replication_env(db) + derive_archive_env(db)
    if db.init_wal is not None:
        env += derive_restore_env(db.init_wal)
    env += db.pod_spec.get('env') or []

    return upsert_env_vars([], *env)


def _secret_volume(name: str, path: str, secret_name: str) -> DerivedVolume:
    return DerivedVolume(volume={
        'name': name,
        'secret': {
            'secretName': secret_name
        }
    },
                         mount={
                             'name': name,
                             'mountPath': path
                         })


def derive_volumes(db: DatabaseSpec) -> List[DerivedVolume]:
    volumes = []

    if db.archiver is not None and not isinstance(db.archiver.backend, LocalBackend):
        volumes.append(_secret_volume(VOLUME_ARCHIVE_SECRET, VOLUME_ARCHIVE_SECRET_PATH, db.archiver.secret_name))

    # Once the data has been restored the restore sources are not needed anymore
    if not db.data_restored:
        if db.init_wal is not None and not isinstance(db.init_wal.backend, LocalBackend):
            volumes.append(_secret_volume(VOLUME_RESTORE_SECRET, VOLUME_RESTORE_SECRET_PATH, db.init_wal.secret_name))
        if db.init_script is not None:
            volumes.append(
                DerivedVolume(volume=dict(name=VOLUME_INIT_SCRIPT, **copy.deepcopy(db.init_script)),
                              mount={
                                  'name': VOLUME_INIT_SCRIPT,
                                  'mountPath': VOLUME_INIT_SCRIPT_PATH
                              }))

    volumes.append(
        DerivedVolume(volume={
            'name': VOLUME_SHARED_MEMORY,
            'emptyDir': {
                'medium': 'Memory'
            }
        },
                      mount={
                          'name': VOLUME_SHARED_MEMORY,
                          'mountPath': VOLUME_SHARED_MEMORY_PATH
                      }))

    # Local backends are mounted directly, subPath is only used to locate an existing archive below the mount path
    if db.archiver is not None and isinstance(db.archiver.backend, LocalBackend):
        local = db.archiver.backend
        volumes.append(
            DerivedVolume(volume=dict(name=VOLUME_LOCAL_ARCHIVE, **copy.deepcopy(local.volume_source)),
                          mount={
                              'name': VOLUME_LOCAL_ARCHIVE,
                              'mountPath': local.mount_path
                          }))
    if db.init_wal is not None and isinstance(db.init_wal.backend, LocalBackend):
        local = db.init_wal.backend
        volumes.append(
            DerivedVolume(volume=dict(name=VOLUME_LOCAL_INIT, **copy.deepcopy(local.volume_source)),
                          mount={
                              'name': VOLUME_LOCAL_INIT,
                              'mountPath': local.mount_path
                          }))

    data_mount = {'name': VOLUME_DATA, 'mountPath': VOLUME_DATA_PATH}
    if db.is_ephemeral:
        empty_dir = {}
        size = key_get(db.storage or {}, 'resources.requests.storage', None)
        if size is not None:
            empty_dir['sizeLimit'] = size
        volumes.append(DerivedVolume(volume={'name': VOLUME_DATA, 'emptyDir': empty_dir}, mount=data_mount))
    else:
        volumes.append(DerivedVolume(volume=None, mount=data_mount))

    if db.config_secret_name is not None:
        volumes.append(_secret_volume(VOLUME_CUSTOM_CONFIG, VOLUME_CUSTOM_CONFIG_PATH, db.config_secret_name))

    return volumes


def derive_volume_claim(db: DatabaseSpec) -> Optional[Dict[str, Any]]:
    if db.is_ephemeral:
        return None

    claim_spec = copy.deepcopy(db.storage) if db.storage else {}
    if not claim_spec.get('accessModes'):
        claim_spec['accessModes'] = ['ReadWriteOnce']
        module_logger.info(f'Using ReadWriteOnce as access modes for the storage of {db.namespace}/{db.name}.')

    claim = {'metadata': {'name': VOLUME_DATA}, 'spec': claim_spec}
    if claim_spec.get('storageClassName'):
        claim['metadata']['annotations'] = {ANNOTATION_STORAGE_CLASS: claim_spec['storageClassName']}

    return claim


def _leader_election_args(config: Config) -> List[str]:
    enable_analytics = config.get('enableAnalytics', False, types=bool)
    verbosity = _LOG_LEVEL_TO_VERBOSITY.get(config.get('logLevel', 'INFO', types=str), 3)
    return ['leader_election', f'--enable-analytics={str(enable_analytics).lower()}', f'--v={verbosity}']


def derive_postgres_container(db: DatabaseSpec, version: VersionInfo, config: Config,
                              env: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """Returns the database container, env defaults to derive_env(db)."""
    pod_spec = db.pod_spec

    if env is None:
        env = derive_env(db)
    env = [env_var(ENV_ANALYTICS_CLIENT_ID, config.get('analyticsClientId', '', types=str))] + list(env)

    return {
        'name': RESOURCE_SINGULAR_POSTGRES,
        'image': version.db_image,
        'args': _leader_election_args(config),
        'env': upsert_env_vars([], *env),
        'ports': [{
            'name': DATABASE_PORT_NAME,
            'containerPort': DATABASE_PORT,
            'protocol': 'TCP',
        }],
        'resources': copy.deepcopy(pod_spec.get('resources') or {}),
        'livenessProbe': copy.deepcopy(pod_spec.get('livenessProbe')),
        'readinessProbe': copy.deepcopy(pod_spec.get('readinessProbe')),
        'lifecycle': copy.deepcopy(pod_spec.get('lifecycle')),
        'securityContext': {
            'privileged': False,
            'capabilities': {
                'add': ['IPC_LOCK', 'SYS_RESOURCE'],
            },
        },
        'volumeMounts': [derived.mount for derived in derive_volumes(db)],
    }


def monitoring_enabled(db: DatabaseSpec) -> bool:
    return db.monitor is not None and db.monitor.vendor == VENDOR_PROMETHEUS


def derive_exporter_container(db: DatabaseSpec, version: VersionInfo) -> Optional[Dict[str, Any]]:
    if not monitoring_enabled(db):
        if db.monitor is not None:
            module_logger.info(f'Monitoring agent {db.monitor.agent} of {db.namespace}/{db.name} is not provided by '
                               f'{VENDOR_PROMETHEUS}, no exporter will be deployed.')
        return None

    monitor = db.monitor
    env = upsert_env_vars(
        monitor.env,
        env_var('DATA_SOURCE_URI', f'localhost:{DATABASE_PORT}/?sslmode=disable'),
        _secret_key_env_var('DATA_SOURCE_USER', db.auth_secret_name, SECRET_USERNAME_KEY),
        _secret_key_env_var('DATA_SOURCE_PASS', db.auth_secret_name, SECRET_PASSWORD_KEY),
        env_var('PG_EXPORTER_WEB_LISTEN_ADDRESS', f':{monitor.port}'),
        env_var('PG_EXPORTER_WEB_TELEMETRY_PATH', db.stats_path),
    )

    return {
        'name': EXPORTER_CONTAINER_NAME,
        'image': version.exporter_image,
        'imagePullPolicy': 'IfNotPresent',
        'args': ['--log.level=info'] + list(monitor.args),
        'ports': [{
            'name': EXPORTER_PORT_NAME,
            'protocol': 'TCP',
            'containerPort': monitor.port,
        }],
        'env': env,
        'resources': copy.deepcopy(monitor.resources),
        'securityContext': copy.deepcopy(monitor.security_context),
    }


def derive_containers(db: DatabaseSpec, version: VersionInfo, config: Config,
                      env: Optional[List[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
    containers = [derive_postgres_container(db, version, config, env)]
    exporter = derive_exporter_container(db, version)
    if exporter is not None:
        containers.append(exporter)
    return containers
