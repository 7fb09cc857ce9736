"""
Capitan - declarative docker container orchestration.

Reconciles the containers a config command declares against the live
Docker engine: create, start, recreate or leave alone, in placement order.
"""

from .models import (
    Action, ContainerSpec, Decision, Direction, Group, ImageStep, Intent,
    ObservedState, ProjectConfig, RunArgs,
)
from .errors import AlreadyAbsent, CapitanError, ConfigError, HookFailure, RuntimeCallError
from .reconcile import decide, run_signature
from .sequencer import LifecycleSequencer, placement_order
from .shutdown import CompletionSignal, ShutdownCoordinator, ShutdownState
from .hooks import HookRunner

__version__ = "0.1.0"

__all__ = [
    # Models
    "Action", "ContainerSpec", "Decision", "Direction", "Group", "ImageStep",
    "Intent", "ObservedState", "ProjectConfig", "RunArgs",
    # Errors
    "AlreadyAbsent", "CapitanError", "ConfigError", "HookFailure", "RuntimeCallError",
    # Core
    "decide", "run_signature", "LifecycleSequencer", "placement_order",
    "CompletionSignal", "ShutdownCoordinator", "ShutdownState", "HookRunner",
]
