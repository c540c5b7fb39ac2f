"""
Reshard Phase Data Models

Pydantic models shared by the phase engine:
- Plan: identity of a resharding operation (read-only to phases)
- Application / Artifact / Instance: collaborator records
- ExecResult: outcome of a remote script execution
- PhaseOutcome / PhaseResult: what a phase reports to the plan controller
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, Any, Optional
from datetime import datetime
from enum import Enum


class PhaseOutcome(str, Enum):
    """Result of one phase attempt"""
    FINISHED = "finished"   # Output properties persisted
    RETRY = "retry"         # Safe to rerun the whole phase
    HOLD = "hold"           # Operator must inspect before anything else runs
    PAUSED = "paused"       # Suspended at a step boundary, not a failure


class InstanceState(str, Enum):
    """Per-instance state during a convergence-gated restart"""
    PENDING = "pending"
    RESTARTING = "restarting"
    VERIFYING = "verifying"
    CONVERGED = "converged"
    NON_CONVERGED = "non-converged"


class Plan(BaseModel):
    """Resharding plan identity"""
    model_config = ConfigDict(frozen=True)

    uuid: str = Field(..., description="Plan UUID")
    shard: str = Field(..., description="Shard being split")
    new_shard: str = Field(..., description="Shard receiving the remapped vnodes")


class Application(BaseModel):
    """Application record from the metadata service"""
    uuid: str
    owner_uuid: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Artifact(BaseModel):
    """Image in the artifact repository"""
    uuid: str
    name: str = ""
    owner: Optional[str] = None
    tags: Dict[str, Any] = Field(default_factory=dict)


class Instance(BaseModel):
    """Routing-tier instance"""
    uuid: str
    service_name: str = ""
    server_uuid: Optional[str] = None


class ShardEntry(BaseModel):
    """One shard in an instance's index map"""
    present: bool = True
    read_only: bool = False


class ExecResult(BaseModel):
    """Result of running a script on a remote execution target"""
    exit_status: int
    stdout: str = ""
    stderr: str = ""


class PhaseResult(BaseModel):
    """Last recorded result of a phase for a plan"""
    phase_id: str
    outcome: PhaseOutcome
    error: Optional[str] = None
    info: Dict[str, Any] = Field(default_factory=dict)
    recorded_at: datetime = Field(default_factory=datetime.utcnow)
