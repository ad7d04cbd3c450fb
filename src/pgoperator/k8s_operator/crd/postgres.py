import logging
import threading
from typing import Any, Dict, Optional

import kopf

from pgoperator.exception import NamingCollisionError, ReadinessTimeoutError
from pgoperator.k8s_operator import OperatorContext
from pgoperator.k8s_operator.constants import EVENT_TYPE_WARNING, EVENT_REASON_FAILED
from pgoperator.k8s_operator.database import DatabaseSpec, VersionInfo
from pgoperator.k8s_operator.resources import KubernetesClient, Postgres, PostgresVersion
from pgoperator.k8s_operator.service import ensure_services
from pgoperator.k8s_operator.statefulset import ensure_combined_node
from pgoperator.k8s_operator.utils import key_get

module_logger = logging.getLogger(__name__)


def get_version_info(client: KubernetesClient, name: str) -> VersionInfo:
    postgres_version = client.get(PostgresVersion, None, name)
    if postgres_version is None:
        raise kopf.TemporaryError(f'PostgresVersion {name} not found.')

    return VersionInfo(db_image=key_get(postgres_version, 'spec.db.image'),
                       exporter_image=key_get(postgres_version, 'spec.exporter.image', ''))


def reconcile(ctx: OperatorContext,
              body: Dict[str, Any],
              cancel: Optional[threading.Event] = None,
              logger=None) -> Dict[str, Any]:
    db = DatabaseSpec.from_body(body)
    version = get_version_info(ctx.client, db.version)

    try:
        services_outcome = ensure_services(ctx, db, logger=logger)
        statefulset_outcome = ensure_combined_node(ctx, db, version, cancel=cancel, logger=logger)
    except NamingCollisionError as exception:
        ctx.recorder.emit(subject=db.as_subject(),
                          type=EVENT_TYPE_WARNING,
                          reason=EVENT_REASON_FAILED,
                          message=str(exception))
        raise kopf.PermanentError(str(exception)) from exception
    except ReadinessTimeoutError as exception:
        raise kopf.TemporaryError(str(exception),
                                  delay=ctx.config.get('readinessRetryDelay', 30, types=int)) from exception

    return {'services': str(services_outcome), 'statefulSet': str(statefulset_outcome)}


@kopf.on.startup()
def startup(memo: kopf.Memo, **_) -> None:
    if getattr(memo, 'context', None) is None:
        memo.context = OperatorContext.from_env()
    if getattr(memo, 'cancel', None) is None:
        memo.cancel = threading.Event()


@kopf.on.cleanup()
def cleanup(memo: kopf.Memo, **_) -> None:
    # Aborts pending waits for pods
    memo.cancel.set()


@kopf.on.resume(*Postgres.group_version_plural())
@kopf.on.create(*Postgres.group_version_plural())
@kopf.on.update(*Postgres.group_version_plural())
def postgres_reconcile(body: Dict[str, Any], memo: kopf.Memo, logger, **_) -> Optional[Dict[str, Any]]:
    return reconcile(memo.context, body, cancel=memo.cancel, logger=logger)
