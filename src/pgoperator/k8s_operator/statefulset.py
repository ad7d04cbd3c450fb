import copy
import logging
import threading
import time
from typing import Any, Dict, List, Optional

import pykube

from pgoperator.exception import NamingCollisionError, ReadinessTimeoutError, ReconciliationCancelled
from pgoperator.k8s_operator import OperatorContext
from pgoperator.k8s_operator.constants import LABEL_NAME, LABEL_INSTANCE, EVENT_TYPE_NORMAL, EVENT_REASON_SUCCESSFUL
from pgoperator.k8s_operator.database import DatabaseSpec, VersionInfo
from pgoperator.k8s_operator.derive import derive_containers, derive_env, derive_volumes, derive_volume_claim
from pgoperator.k8s_operator.reconcile import Outcome, Mutator, create_or_patch
from pgoperator.k8s_operator.resources import KubernetesClient, PodDisruptionBudget
from pgoperator.k8s_operator.upsert import apply_metadata, set_or_remove, merge_containers, merge_volumes, \
    merge_volume_claims
from pgoperator.k8s_operator.utils import key_get

module_logger = logging.getLogger(__name__)

UPDATE_STRATEGY_ON_DELETE = 'OnDelete'

# Copied verbatim from the pod template of the Postgres resource, unset fields are removed
_POD_SPEC_PASSTHROUGH_FIELDS = ('nodeSelector', 'affinity', 'tolerations', 'imagePullSecrets', 'priorityClassName',
                                'priority', 'serviceAccountName')

# Defaulted by the API server, only set when present in the pod template
_POD_SPEC_DEFAULTED_FIELDS = ('schedulerName', 'securityContext')


def check_statefulset(client: KubernetesClient, db: DatabaseSpec) -> None:
    """Raises NamingCollisionError if a StatefulSet with our name exists that doesn't belong to db."""
    statefulset = client.get(pykube.StatefulSet, db.namespace, db.offshoot_name)
    if statefulset is None:
        return

    labels = key_get(statefulset, 'metadata.labels', {})
    selectors = db.offshoot_selectors()
    if labels.get(LABEL_NAME) != selectors[LABEL_NAME] or labels.get(LABEL_INSTANCE) != selectors[LABEL_INSTANCE]:
        raise NamingCollisionError(f'Intended StatefulSet {db.namespace}/{db.offshoot_name} already exists.')


def build_statefulset_mutator(db: DatabaseSpec, version: VersionInfo, ctx: OperatorContext,
                              env: List[Dict[str, Any]]) -> Mutator:
    pod_spec = db.pod_spec
    derived_volumes = derive_volumes(db)
    volume_claim = derive_volume_claim(db)
    containers = derive_containers(db, version, ctx.config, env)

    def mutate(statefulset: Dict[str, Any]) -> Dict[str, Any]:
        statefulset = apply_metadata(statefulset, db.owner_reference(), db.offshoot_labels(),
                                     db.controller_annotations)

        spec = statefulset.setdefault('spec', {})
        spec['replicas'] = db.replicas
        spec['serviceName'] = db.governing_service_name
        spec['selector'] = {'matchLabels': db.offshoot_selectors()}
        spec['updateStrategy'] = {'type': UPDATE_STRATEGY_ON_DELETE}

        template = spec.setdefault('template', {})
        template_metadata = template.setdefault('metadata', {})
        template_metadata['labels'] = db.offshoot_selectors()
        set_or_remove(template_metadata, 'annotations', db.pod_annotations)

        template_spec = template.setdefault('spec', {})
        init_containers = merge_containers(template_spec.get('initContainers'), *(pod_spec.get('initContainers') or []))
        set_or_remove(template_spec, 'initContainers', init_containers)
        template_spec['containers'] = merge_containers(template_spec.get('containers'), *containers)

        for field in _POD_SPEC_PASSTHROUGH_FIELDS:
            set_or_remove(template_spec, field, pod_spec.get(field))
        for field in _POD_SPEC_DEFAULTED_FIELDS:
            if pod_spec.get(field):
                template_spec[field] = copy.deepcopy(pod_spec[field])

        volumes = merge_volumes(template_spec.get('volumes'),
                                *[derived.volume for derived in derived_volumes if derived.volume is not None])
        set_or_remove(template_spec, 'volumes', volumes)

        if volume_claim is not None:
            spec['volumeClaimTemplates'] = merge_volume_claims(spec.get('volumeClaimTemplates'), volume_claim)

        return statefulset

    return mutate


def wait_until_pods_running(client: KubernetesClient,
                            namespace: str,
                            selector: Dict[str, str],
                            count: int,
                            timeout: float,
                            interval: float,
                            cancel: Optional[threading.Event] = None,
                            logger=None) -> None:
    """Blocks until count pods matching selector are running.

    Raises ReadinessTimeoutError when timeout seconds have passed and ReconciliationCancelled as soon as cancel is
    set. The pods are polled every interval seconds.
    """
    logger = logger if logger else module_logger

    deadline = time.monotonic() + timeout
    while True:
        if cancel is not None and cancel.is_set():
            raise ReconciliationCancelled(f'Waiting for pods in namespace {namespace} has been cancelled.')

        pods = client.list(pykube.Pod, namespace, selector)
        running = [pod for pod in pods if key_get(pod, 'status.phase', None) == 'Running']
        if len(pods) >= count and len(running) == len(pods):
            logger.debug(f'All {len(running)} pods in namespace {namespace} are running.')
            return

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ReadinessTimeoutError(f'Only {len(running)} of {count} pods in namespace {namespace} are running '
                                        f'after {timeout} seconds.')

        logger.debug(f'Waiting for pods in namespace {namespace}, {len(running)} of {count} are running.')
        if cancel is not None:
            cancel.wait(min(interval, remaining))
        else:
            time.sleep(min(interval, remaining))


def max_unavailable(replicas: int) -> int:
    return max(1, (replicas - 1) // 2)


def ensure_pod_disruption_budget(client: KubernetesClient, statefulset: Dict[str, Any], logger=None) -> Outcome:
    metadata = statefulset['metadata']
    owner = {
        'apiVersion': statefulset.get('apiVersion', 'apps/v1'),
        'kind': statefulset.get('kind', 'StatefulSet'),
        'name': metadata['name'],
        'uid': metadata.get('uid', ''),
        'controller': True,
        'blockOwnerDeletion': True,
    }
    replicas = key_get(statefulset, 'spec.replicas', 1)
    match_labels = key_get(statefulset, 'spec.template.metadata.labels', {})

    def mutate(pdb: Dict[str, Any]) -> Dict[str, Any]:
        pdb = apply_metadata(pdb, owner, metadata.get('labels') or {})

        spec = pdb.setdefault('spec', {})
        spec['selector'] = {'matchLabels': dict(match_labels)}
        spec['maxUnavailable'] = max_unavailable(replicas)
        spec.pop('minAvailable', None)
        return pdb

    _, outcome = create_or_patch(client, PodDisruptionBudget, metadata['namespace'], metadata['name'], mutate,
                                 logger=logger)
    return outcome


def ensure_statefulset(ctx: OperatorContext,
                       db: DatabaseSpec,
                       version: VersionInfo,
                       env: List[Dict[str, Any]],
                       cancel: Optional[threading.Event] = None,
                       logger=None) -> Outcome:
    """Reconciles the StatefulSet of db and its PodDisruptionBudget.

    When the StatefulSet has been created or patched this waits for its pods to run before the budget is
    ensured. Nothing is rolled back on errors.
    """
    check_statefulset(ctx.client, db)

    statefulset, outcome = create_or_patch(ctx.client,
                                           pykube.StatefulSet,
                                           db.namespace,
                                           db.offshoot_name,
                                           build_statefulset_mutator(db, version, ctx, env),
                                           logger=logger)

    if outcome.changed:
        wait_until_pods_running(ctx.client,
                                db.namespace,
                                key_get(statefulset, 'spec.selector.matchLabels', db.offshoot_selectors()),
                                key_get(statefulset, 'spec.replicas', db.replicas),
                                timeout=ctx.config.get('readinessTimeout', 600, types=(int, float)),
                                interval=ctx.config.get('readinessPollInterval', 2, types=(int, float)),
                                cancel=cancel,
                                logger=logger)

        ctx.recorder.emit(subject=db.as_subject(),
                          type=EVENT_TYPE_NORMAL,
                          reason=EVENT_REASON_SUCCESSFUL,
                          message=f'Successfully {outcome} StatefulSet')

    ensure_pod_disruption_budget(ctx.client, statefulset, logger=logger)
    return outcome


def ensure_combined_node(ctx: OperatorContext,
                         db: DatabaseSpec,
                         version: VersionInfo,
                         cancel: Optional[threading.Event] = None,
                         logger=None) -> Outcome:
    return ensure_statefulset(ctx, db, version, derive_env(db), cancel=cancel, logger=logger)
