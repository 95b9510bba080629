"""
Process-wide services shared by every agent run.
"""

from dataclasses import dataclass, field

from .circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from .file_tracker import FileTracker


@dataclass
class AgentServices:
    file_tracker: FileTracker = field(default_factory=FileTracker)
    circuit_breakers: CircuitBreakerRegistry = field(default_factory=CircuitBreakerRegistry)


def create_services(config=None) -> AgentServices:
    """Build the shared services, taking breaker defaults from `config` when given."""
    if config is None:
        return AgentServices()
    return AgentServices(
        file_tracker=FileTracker(),
        circuit_breakers=CircuitBreakerRegistry(CircuitBreakerConfig.from_config(config)),
    )
