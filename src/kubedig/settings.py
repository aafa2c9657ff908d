import os
from dataclasses import dataclass
from typing import Optional, Tuple

from .errors import ConfigurationError
from .log_streamer import ContainerState


@dataclass(frozen=True)
class Settings:
    """Validated runtime configuration. Durations are in seconds."""

    context: Optional[str] = None
    namespace: Optional[str] = None
    pod_query: Optional[str] = None
    container_states: Tuple[ContainerState, ...] = (ContainerState.ANY,)
    log_retrieval_timeout: float = 0.01
    render_interval: float = 0.01
    queue_capacity: int = 1000
    log_file: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_args(cls, args, environ=None):
        """
        Build settings from parsed command-line arguments.

        Environment fallbacks: KUBEDIG_LOG_FILE, KUBEDIG_LOG_LEVEL. The
        K8S_NAMESPACE fallback is applied when the namespace is resolved.

        Raises:
            ConfigurationError: on unknown container states or non-positive numbers
        """
        environ = os.environ if environ is None else environ

        for name in ("log_retrieval_timeout", "render_interval", "queue_capacity"):
            value = getattr(args, name)
            if value <= 0:
                raise ConfigurationError(f"--{name.replace('_', '-')} must be positive, got {value}")

        states = tuple(ContainerState.parse(value) for value in args.container_states.split(",") if value.strip())

        return cls(
            context=args.context,
            namespace=args.namespace,
            pod_query=args.pod_query,
            container_states=states or (ContainerState.ANY,),
            log_retrieval_timeout=args.log_retrieval_timeout / 1000,
            render_interval=args.render_interval / 1000,
            queue_capacity=args.queue_capacity,
            log_file=args.log_file or environ.get("KUBEDIG_LOG_FILE") or None,
            log_level=environ.get("KUBEDIG_LOG_LEVEL", "INFO").upper(),
        )
