import logging
from typing import Any, Dict

import pykube

from pgoperator.k8s_operator import OperatorContext
from pgoperator.k8s_operator.constants import LABEL_ROLE, ROLE_PRIMARY, ROLE_STANDBY, PRIMARY_SERVICE_PORT_NAME, \
    STANDBY_SERVICE_PORT_NAME, DATABASE_PORT, DATABASE_PORT_NAME, EXPORTER_PORT_NAME, EVENT_TYPE_NORMAL, \
    EVENT_REASON_SUCCESSFUL, VENDOR_PROMETHEUS
from pgoperator.k8s_operator.database import DatabaseSpec
from pgoperator.k8s_operator.derive import monitoring_enabled
from pgoperator.k8s_operator.reconcile import Outcome, Mutator, create_or_patch
from pgoperator.k8s_operator.upsert import apply_metadata, set_or_remove, merge_service_ports, upsert_service_ports
from pgoperator.k8s_operator.utils import key_get

module_logger = logging.getLogger(__name__)


def build_governing_service_mutator(db: DatabaseSpec) -> Mutator:

    def mutate(service: Dict[str, Any]) -> Dict[str, Any]:
        service = apply_metadata(service, db.owner_reference(), db.offshoot_labels())

        spec = service.setdefault('spec', {})
        spec['type'] = 'ClusterIP'
        spec['clusterIP'] = 'None'
        spec['selector'] = db.offshoot_selectors()
        spec['publishNotReadyAddresses'] = True
        return service

    return mutate


def build_database_service_mutator(db: DatabaseSpec, *, role: str, port_name: str,
                                   template: Dict[str, Any]) -> Mutator:
    """Returns the mutator shared by the primary and the standby service.

    template is the service template of the Postgres resource, its settings are applied on top of the defaults.
    """
    template_spec = template.get('spec') or {}
    template_annotations = key_get(template, 'metadata.annotations', {})

    def mutate(service: Dict[str, Any]) -> Dict[str, Any]:
        service = apply_metadata(service, db.owner_reference(), db.offshoot_labels(), template_annotations)

        spec = service.setdefault('spec', {})
        selector = db.offshoot_selectors()
        selector[LABEL_ROLE] = role
        spec['selector'] = selector

        current_ports = spec.get('ports') or []
        ports = merge_service_ports(current_ports, [{
            'name': port_name,
            'port': DATABASE_PORT,
            'targetPort': DATABASE_PORT_NAME,
        }])
        spec['ports'] = upsert_service_ports(ports, template_spec.get('ports') or [], previous=current_ports)

        if template_spec.get('clusterIP'):
            spec['clusterIP'] = template_spec['clusterIP']
        if template_spec.get('type'):
            spec['type'] = template_spec['type']
        set_or_remove(spec, 'externalIPs', template_spec.get('externalIPs'))
        set_or_remove(spec, 'loadBalancerIP', template_spec.get('loadBalancerIP'))
        set_or_remove(spec, 'loadBalancerSourceRanges', template_spec.get('loadBalancerSourceRanges'))
        set_or_remove(spec, 'externalTrafficPolicy', template_spec.get('externalTrafficPolicy'))
        if (template_spec.get('healthCheckNodePort') or 0) > 0:
            spec['healthCheckNodePort'] = template_spec['healthCheckNodePort']

        return service

    return mutate


def build_stats_service_mutator(db: DatabaseSpec) -> Mutator:

    def mutate(service: Dict[str, Any]) -> Dict[str, Any]:
        service = apply_metadata(service, db.owner_reference(), db.stats_service_labels())

        spec = service.setdefault('spec', {})
        spec['selector'] = db.offshoot_selectors()
        spec['ports'] = merge_service_ports(spec.get('ports'), [{
            'name': EXPORTER_PORT_NAME,
            'protocol': 'TCP',
            'port': db.monitor.port,
            'targetPort': EXPORTER_PORT_NAME,
        }])
        return service

    return mutate


def _record(ctx: OperatorContext, db: DatabaseSpec, outcome: Outcome, what: str) -> None:
    if outcome.changed:
        ctx.recorder.emit(subject=db.as_subject(),
                          type=EVENT_TYPE_NORMAL,
                          reason=EVENT_REASON_SUCCESSFUL,
                          message=f'Successfully {outcome} {what}')


def ensure_governing_service(ctx: OperatorContext, db: DatabaseSpec, logger=None) -> Outcome:
    _, outcome = create_or_patch(ctx.client,
                                 pykube.Service,
                                 db.namespace,
                                 db.governing_service_name,
                                 build_governing_service_mutator(db),
                                 logger=logger)
    _record(ctx, db, outcome, 'governing service')
    return outcome


def ensure_primary_service(ctx: OperatorContext, db: DatabaseSpec, logger=None) -> Outcome:
    mutate = build_database_service_mutator(db,
                                            role=ROLE_PRIMARY,
                                            port_name=PRIMARY_SERVICE_PORT_NAME,
                                            template=db.service_template)
    _, outcome = create_or_patch(ctx.client, pykube.Service, db.namespace, db.service_name, mutate, logger=logger)
    return outcome


def ensure_standby_service(ctx: OperatorContext, db: DatabaseSpec, logger=None) -> Outcome:
    mutate = build_database_service_mutator(db,
                                            role=ROLE_STANDBY,
                                            port_name=STANDBY_SERVICE_PORT_NAME,
                                            template=db.replica_service_template)
    _, outcome = create_or_patch(ctx.client,
                                 pykube.Service,
                                 db.namespace,
                                 db.standby_service_name,
                                 mutate,
                                 logger=logger)
    return outcome


def ensure_service(ctx: OperatorContext, db: DatabaseSpec, logger=None) -> Outcome:
    primary_outcome = ensure_primary_service(ctx, db, logger=logger)
    _record(ctx, db, primary_outcome, 'Service')

    if db.replicas <= 1:
        return primary_outcome

    standby_outcome = ensure_standby_service(ctx, db, logger=logger)
    _record(ctx, db, standby_outcome, 'Service')

    return Outcome.combine(primary_outcome, standby_outcome)


def ensure_stats_service(ctx: OperatorContext, db: DatabaseSpec, logger=None) -> Outcome:
    logger = logger if logger else module_logger

    if db.monitor is None:
        return Outcome.UNCHANGED
    if not monitoring_enabled(db):
        logger.info(f'Monitoring agent of {db.namespace}/{db.name} is not provided by {VENDOR_PROMETHEUS}, '
                    'skipping stats service.')
        return Outcome.UNCHANGED

    _, outcome = create_or_patch(ctx.client,
                                 pykube.Service,
                                 db.namespace,
                                 db.stats_service_name,
                                 build_stats_service_mutator(db),
                                 logger=logger)
    _record(ctx, db, outcome, 'stats service')
    return outcome


def ensure_services(ctx: OperatorContext, db: DatabaseSpec, logger=None) -> Outcome:
    """Reconciles all services of a Postgres resource.

    The returned outcome covers the primary and standby services only. The first failing step aborts the rest.
    """
    ensure_governing_service(ctx, db, logger=logger)
    outcome = ensure_service(ctx, db, logger=logger)
    ensure_stats_service(ctx, db, logger=logger)
    return outcome
