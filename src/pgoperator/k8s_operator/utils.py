from typing import Any, Dict

_KeyGetNoDefault = object()


def key_get(obj: Dict[str, Any], key: str, default: Any = _KeyGetNoDefault) -> Any:
    position = obj
    for component in key.split('.'):
        try:
            position = position.get(component, None)
        except AttributeError:
            position = None
        if position is None:
            if default is not _KeyGetNoDefault:
                return default
            raise KeyError(f'{key} does not exist.')

    return position
