"""
Reshard Phases

- Phases extend ReshardPhase from reshard.workflow.phases.phase_executor
- Phases register with @register_phase from reshard.workflow.phases.registry

Importing this package registers every phase below.
"""

from .phase_executor import ReshardPhase
from .registry import register_phase, get_phase_class, list_registered_phases
from .remap_ring import RemapRingPhase
from .restart_readonly import RestartElectricMorayReadonlyPhase

__all__ = [
    "ReshardPhase",
    "register_phase",
    "get_phase_class",
    "list_registered_phases",
    "RemapRingPhase",
    "RestartElectricMorayReadonlyPhase",
]
