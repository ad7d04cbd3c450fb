import datetime
import logging
import uuid
from typing import Dict, Any, List, Optional, Tuple, Type, Union

import pykube
import requests
from pykube.objects import APIObject as pykube_APIObject, NamespacedAPIObject as pykube_NamespacedAPIObject

from pgoperator.k8s_operator.constants import API_GROUP, API_VERSION, CATALOG_API_GROUP, CATALOG_API_VERSION, \
    RESOURCE_KIND_POSTGRES, RESOURCE_PLURAL_POSTGRES
from pgoperator.k8s_operator.settings import running_pod_name

module_logger = logging.getLogger(__name__)


class APIObject(pykube_APIObject):

    @classmethod
    def group_version_plural(cls) -> Tuple[str, str, str]:
        group_version = cls.version.split('/')
        return group_version[0], group_version[1], cls.endpoint

    def __hash__(self):
        return hash(self.name)


class NamespacedAPIObject(pykube_NamespacedAPIObject):

    @classmethod
    def group_version_plural(cls) -> Tuple[str, str, str]:
        group_version = cls.version.split('/')
        return group_version[0], group_version[1], cls.endpoint

    def __hash__(self):
        return hash((self.namespace, self.name))


class Postgres(NamespacedAPIObject):

    version = f'{API_GROUP}/{API_VERSION}'
    endpoint = RESOURCE_PLURAL_POSTGRES
    kind = RESOURCE_KIND_POSTGRES


class PostgresVersion(APIObject):

    version = f'{CATALOG_API_GROUP}/{CATALOG_API_VERSION}'
    endpoint = 'postgresversions'
    kind = 'PostgresVersion'


class PodDisruptionBudget(NamespacedAPIObject):

    version = 'policy/v1'
    endpoint = 'poddisruptionbudgets'
    kind = 'PodDisruptionBudget'


KindType = Type[Union[pykube_APIObject, pykube_NamespacedAPIObject]]


class KubernetesClient:
    """Thin synchronous facade over pykube working on plain dictionaries.

    Absence of an object is reported as None, every other API error is raised unchanged.
    """

    def __init__(self, api: pykube.HTTPClient) -> None:
        self.api = api

    @classmethod
    def from_env(cls) -> 'KubernetesClient':
        return cls(pykube.HTTPClient(pykube.KubeConfig.from_env()))

    def get(self, kind: KindType, namespace: Optional[str], name: str) -> Optional[Dict[str, Any]]:
        query = kind.objects(self.api)
        if namespace is not None:
            query = query.filter(namespace=namespace)
        try:
            return query.get_by_name(name).obj
        except pykube.exceptions.ObjectDoesNotExist:
            return None

    def create(self, kind: KindType, obj: Dict[str, Any]) -> Dict[str, Any]:
        api_object = kind(self.api, obj)
        api_object.create()
        return api_object.obj

    def patch(self, kind: KindType, obj: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
        api_object = kind(self.api, obj)
        api_object.patch(patch)
        return api_object.obj

    def list(self, kind: KindType, namespace: str, selector: Dict[str, str]) -> List[Dict[str, Any]]:
        return [api_object.obj for api_object in kind.objects(self.api).filter(namespace=namespace, selector=selector)]


def create_object_ref(resource_dict: Dict[str, Any], include_gvk: bool = True) -> Dict[str, Any]:
    reference = {
        'name': resource_dict['metadata']['name'],
        'namespace': resource_dict['metadata']['namespace'],
        'uid': resource_dict['metadata'].get('uid'),
    }

    if include_gvk:
        reference.update({'apiVersion': resource_dict['apiVersion'], 'kind': resource_dict['kind']})

    return reference


class EventRecorder:

    def __init__(self, client: KubernetesClient, component: str) -> None:
        self.client = client
        self.component = component

    def build_event(self, *, subject: Dict[str, Any], type: str, reason: str, message: str) -> Dict[str, Any]:
        # Kubernetes requires a time including microseconds
        event_time = datetime.datetime.utcnow().isoformat(timespec='microseconds') + 'Z'

        # Setting uid is required so that kubectl describe finds the event.
        # And setting firstTimestamp is required so that kubectl shows a proper age for it.
        return {
            'apiVersion': 'v1',
            'kind': 'Event',
            'metadata': {
                'name': '{}.{}'.format(subject['metadata']['name'], uuid.uuid4().hex[:16]),
                'namespace': subject['metadata']['namespace'],
            },
            'involvedObject': create_object_ref(subject),
            'eventTime': event_time,
            'firstTimestamp': event_time,
            'lastTimestamp': event_time,
            'type': type,
            'reason': reason,
            # Message can be at most 1024 characters long
            'message': message[:1024],
            'action': 'Reconcile',
            'reportingComponent': self.component,
            'reportingInstance': running_pod_name,
            'source': {
                'component': self.component
            }
        }

    def emit(self, *, subject: Dict[str, Any], type: str, reason: str, message: str) -> None:
        event = self.build_event(subject=subject, type=type, reason=reason, message=message)
        try:
            self.client.create(pykube.Event, event)
        except (requests.RequestException, pykube.exceptions.KubernetesError) as exception:
            module_logger.warning(f'Recording event "{reason}: {message}" for '
                                  f'{subject["metadata"]["namespace"]}/{subject["metadata"]["name"]} failed: '
                                  f'{exception}')
