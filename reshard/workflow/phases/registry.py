"""
Phase Registry

Phases register themselves with the @register_phase decorator; the service
looks them up by ID when an operator starts a phase.

Usage:
    from reshard.workflow.phases.registry import register_phase, get_phase_class

    @register_phase("remap_ring", "Remap Hash Ring")
    class RemapRingPhase(ReshardPhase):
        ...

    phase = get_phase_class("remap_ring")(ctl)
    outcome = await phase.run()
"""

import logging
from typing import Dict, List, Type

from reshard.workflow.phases.phase_executor import ReshardPhase

logger = logging.getLogger(__name__)

# phase_id → ReshardPhase subclass
_PHASE_REGISTRY: Dict[str, Type[ReshardPhase]] = {}


class UnknownPhaseError(KeyError):
    pass


def register_phase(phase_id: str, phase_name: str = ""):
    """
    Decorator to register a phase class.

    Args:
        phase_id: Unique identifier for the phase
        phase_name: Human-readable name (defaults to class name)
    """
    def decorator(cls: Type[ReshardPhase]) -> Type[ReshardPhase]:
        if phase_id in _PHASE_REGISTRY:
            existing = _PHASE_REGISTRY[phase_id]
            logger.warning(
                f"Overwriting phase '{phase_id}': "
                f"{existing.__name__} → {cls.__name__}"
            )

        cls.phase_id = phase_id
        cls.phase_name = phase_name or cls.__name__
        _PHASE_REGISTRY[phase_id] = cls

        logger.debug(f"Registered phase: {phase_id} → {cls.__name__}")
        return cls

    return decorator


def get_phase_class(phase_id: str) -> Type[ReshardPhase]:
    """
    Raises:
        UnknownPhaseError: If phase_id is not registered
    """
    if phase_id not in _PHASE_REGISTRY:
        raise UnknownPhaseError(
            f"Unknown phase '{phase_id}'. "
            f"Registered phases: {list_registered_phases()}"
        )
    return _PHASE_REGISTRY[phase_id]


def list_registered_phases() -> List[str]:
    return sorted(_PHASE_REGISTRY.keys())
