import copy
import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from pgoperator.k8s_operator.resources import KindType, KubernetesClient

module_logger = logging.getLogger(__name__)

Mutator = Callable[[Dict[str, Any]], Dict[str, Any]]


class Outcome(Enum):
    UNCHANGED = 'unchanged'
    CREATED = 'created'
    PATCHED = 'patched'

    def __str__(self) -> str:
        return self.value

    @property
    def changed(self) -> bool:
        return self is not Outcome.UNCHANGED

    @staticmethod
    def combine(first: 'Outcome', second: 'Outcome') -> 'Outcome':
        if first is Outcome.CREATED and second is Outcome.CREATED:
            return Outcome.CREATED
        elif first is Outcome.PATCHED or second is Outcome.PATCHED:
            return Outcome.PATCHED
        return Outcome.UNCHANGED


def build_merge_patch(original: Any, modified: Any) -> Any:
    """Returns a JSON merge patch (RFC 7386) turning original into modified.

    Lists are replaced as a whole, keys missing from modified are set to None.
    """
    if not isinstance(original, dict) or not isinstance(modified, dict):
        return copy.deepcopy(modified)

    patch = {}
    for key in original.keys() - modified.keys():
        patch[key] = None
    for key, value in modified.items():
        if key not in original:
            patch[key] = copy.deepcopy(value)
        elif original[key] != value:
            if isinstance(original[key], dict) and isinstance(value, dict):
                patch[key] = build_merge_patch(original[key], value)
            else:
                patch[key] = copy.deepcopy(value)

    return patch


def empty_object(kind: KindType, namespace: str, name: str) -> Dict[str, Any]:
    return {
        'apiVersion': kind.version,
        'kind': kind.kind,
        'metadata': {
            'name': name,
            'namespace': namespace,
        },
    }


def create_or_patch(client: KubernetesClient,
                    kind: KindType,
                    namespace: str,
                    name: str,
                    mutate: Mutator,
                    logger=None) -> Tuple[Dict[str, Any], Outcome]:
    """Creates the object or brings an existing one in line with mutate.

    mutate receives a private copy of the current object and must return the desired object. It has to be
    idempotent and may only touch fields owned by this operator. API errors are passed on unchanged.
    """
    logger = logger if logger else module_logger

    current: Optional[Dict[str, Any]] = client.get(kind, namespace, name)
    if current is None:
        desired = mutate(empty_object(kind, namespace, name))
        logger.info(f'Creating {kind.kind} {namespace}/{name}.')
        return client.create(kind, desired), Outcome.CREATED

    desired = mutate(copy.deepcopy(current))
    if desired == current:
        logger.debug(f'{kind.kind} {namespace}/{name} is up to date.')
        return current, Outcome.UNCHANGED

    patch = build_merge_patch(current, desired)
    logger.info(f'Patching {kind.kind} {namespace}/{name}.')
    logger.debug(f'Patch for {kind.kind} {namespace}/{name}: {patch}')
    return client.patch(kind, current, patch), Outcome.PATCHED
