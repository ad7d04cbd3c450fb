from typing import Optional

from pgoperator.config import Config
from pgoperator.k8s_operator.resources import KubernetesClient, EventRecorder


class OperatorContext:
    """Everything a reconciliation needs from the outside world.

    One instance is created at operator start-up and handed to every entry point.
    """

    def __init__(self, *, client: KubernetesClient, config: Config, recorder: Optional[EventRecorder] = None) -> None:
        self.client = client
        self.config = config
        if recorder is None:
            recorder = EventRecorder(client, config.get('eventComponent', 'pgoperator', types=str))
        self.recorder = recorder

    @classmethod
    def from_env(cls, config: Optional[Config] = None) -> 'OperatorContext':
        return cls(client=KubernetesClient.from_env(), config=config if config is not None else Config())
