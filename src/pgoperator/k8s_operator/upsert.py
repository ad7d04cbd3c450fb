import copy
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

Item = Dict[str, Any]


def _by_name(item: Item) -> Any:
    return item['name']


def upsert_by_name(collection: Optional[Sequence[Item]], item: Item, key: Callable[[Item], Any] = _by_name) -> List[Item]:
    """Returns a copy of collection in which the entry with the same key as item has been replaced by item.

    The replaced entry keeps its position. If there is no such entry, item is appended.
    """
    new_collection = list(collection or [])
    item_key = key(item)
    for i, value in enumerate(new_collection):
        if key(value) == item_key:
            new_collection[i] = copy.deepcopy(item)
            break
    else:
        new_collection.append(copy.deepcopy(item))

    return new_collection


def upsert_all(collection: Optional[Sequence[Item]], items: Iterable[Item],
               key: Callable[[Item], Any] = _by_name) -> List[Item]:
    new_collection = list(collection or [])
    for item in items:
        new_collection = upsert_by_name(new_collection, item, key=key)
    return new_collection


def upsert_env_vars(env: Optional[Sequence[Item]], *env_vars: Item) -> List[Item]:
    return upsert_all(env, env_vars)


def overlay(current: Any, desired: Any) -> Any:
    """Returns desired laid over current.

    Nested dictionaries are merged, keys set to None in desired are removed and everything else is replaced.
    Keys only present in current, usually filled in by the API server, are kept.
    """
    if not isinstance(current, dict) or not isinstance(desired, dict):
        return copy.deepcopy(desired)

    merged = copy.deepcopy(current)
    for key, value in desired.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = overlay(merged.get(key), value)

    return merged


def _variant(item: Item) -> set:
    return {key for key, value in item.items() if isinstance(value, dict)}


def merge_variant(current: Optional[Item], desired: Item) -> Item:
    """Overlays desired onto current if both are of the same kind, otherwise returns a copy of desired.

    The kind of a volume is its source and the kind of a probe is its handler, in both cases the only keys
    holding a dictionary.
    """
    if current is None or _variant(current) != _variant(desired):
        return copy.deepcopy(desired)
    return overlay(current, desired)


def merge_volumes(volumes: Optional[Sequence[Item]], *new_volumes: Item) -> List[Item]:
    new_collection = list(volumes or [])
    for volume in new_volumes:
        current = next((v for v in new_collection if v['name'] == volume['name']), None)
        new_collection = upsert_by_name(new_collection, merge_variant(current, volume))
    return new_collection


_PROBE_FIELDS = ('livenessProbe', 'readinessProbe', 'startupProbe')


def merge_container(current: Optional[Item], desired: Item) -> Item:
    """Overlays desired onto current.

    Keys set to None in desired are removed, env and volumeMounts are upserted by name so entries added by others
    survive. Probes keep the fields defaulted by the API server as long as their handler stays the same.
    Everything else in current, like server defaulted fields, is kept.
    """
    merged = copy.deepcopy(current) if current else {}
    for key, value in desired.items():
        if value is None:
            merged.pop(key, None)
        elif key in ('env', 'volumeMounts'):
            merged[key] = upsert_all(merged.get(key), value)
        elif key in _PROBE_FIELDS:
            merged[key] = merge_variant(merged.get(key), value)
        else:
            merged[key] = copy.deepcopy(value)

    return merged


def merge_containers(containers: Optional[Sequence[Item]], *new_containers: Item) -> List[Item]:
    new_collection = list(containers or [])
    for container in new_containers:
        current = next((c for c in new_collection if c['name'] == container['name']), None)
        new_collection = upsert_by_name(new_collection, merge_container(current, container))
    return new_collection


def merge_volume_claims(claims: Optional[Sequence[Item]], *new_claims: Item) -> List[Item]:
    """Upserts claim templates by name.

    Metadata and spec of an existing template are overlaid, its status and server defaulted fields like
    spec.volumeMode are kept.
    """
    new_collection = list(claims or [])
    for claim in new_claims:
        name = claim['metadata']['name']
        current = next((c for c in new_collection if c['metadata']['name'] == name), None)
        if current is not None:
            merged = copy.deepcopy(current)
            merged['metadata'] = overlay(current.get('metadata'), claim['metadata'])
            merged['spec'] = overlay(current.get('spec'), claim.get('spec') or {})
            claim = merged
        new_collection = upsert_by_name(new_collection, claim, key=lambda c: c['metadata']['name'])
    return new_collection


def ensure_owner_reference(metadata: Item, owner: Item) -> Item:
    new_metadata = dict(metadata)
    new_metadata['ownerReferences'] = upsert_by_name(metadata.get('ownerReferences'),
                                                     owner,
                                                     key=lambda reference: reference.get('uid'))
    return new_metadata


def merge_service_ports(current: Optional[Sequence[Item]], desired: Sequence[Item]) -> List[Item]:
    """Returns desired, keeping the server assigned nodePort and the protocol of current ports with the same port number."""
    current_ports = {port.get('port'): port for port in current or []}
    merged = []
    for port in desired:
        port = copy.deepcopy(port)
        current_port = current_ports.get(port.get('port'))
        if current_port is not None:
            if not port.get('nodePort') and current_port.get('nodePort'):
                port['nodePort'] = current_port['nodePort']
            if not port.get('protocol') and current_port.get('protocol'):
                port['protocol'] = current_port['protocol']
        merged.append(port)

    return merged


def upsert_service_ports(current: Optional[Sequence[Item]], ports: Sequence[Item],
                         previous: Optional[Sequence[Item]] = None) -> List[Item]:
    """Merges user supplied ports into current by name.

    Fields set on a user port overwrite those of the current port with the same name. New ports are appended and
    inherit nodePort, protocol and, for an unchanged port number, targetPort from the port with the same name in
    previous, the ports of the live object.
    """
    previous_ports = {port.get('name'): port for port in previous or []}
    merged = [copy.deepcopy(port) for port in current or []]
    for port in ports:
        existing = next((p for p in merged if p.get('name') == port.get('name')), None)
        if existing is not None:
            existing.update({key: copy.deepcopy(value) for key, value in port.items() if value})
            continue

        port = copy.deepcopy(port)
        previous_port = previous_ports.get(port.get('name'))
        if previous_port is not None:
            if not port.get('nodePort') and previous_port.get('nodePort'):
                port['nodePort'] = previous_port['nodePort']
            if not port.get('protocol') and previous_port.get('protocol'):
                port['protocol'] = previous_port['protocol']
            # Defaulted to the port number by the API server
            if not port.get('targetPort') and previous_port.get('targetPort') and \
                    previous_port.get('port') == port.get('port'):
                port['targetPort'] = previous_port['targetPort']
        merged.append(port)

    return merged


def apply_metadata(obj: Item, owner: Item, labels: Dict[str, str],
                   annotations: Optional[Dict[str, str]] = None) -> Item:
    """Returns a copy of obj owned by owner and carrying labels and annotations.

    Labels and annotations set by others are kept, ours are overwritten.
    """
    new_obj = copy.deepcopy(obj)
    metadata = ensure_owner_reference(new_obj.get('metadata', {}), owner)

    metadata['labels'] = dict(metadata.get('labels') or {})
    metadata['labels'].update(labels)
    if annotations:
        metadata['annotations'] = dict(metadata.get('annotations') or {})
        metadata['annotations'].update(annotations)

    new_obj['metadata'] = metadata
    return new_obj


def set_or_remove(obj: Item, key: str, value: Any) -> None:
    if value:
        obj[key] = copy.deepcopy(value)
    else:
        obj.pop(key, None)
