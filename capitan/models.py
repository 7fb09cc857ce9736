"""
Capitan - Project Schema + Pydantic Models
═══════════════════════════════════════════
Defines the data structures for:
- RunArgs: declared creation arguments of a container
- ContainerSpec: one declared container instance (immutable)
- ObservedState: point-in-time engine state for one container
- ProjectConfig: declared containers + leftovers to scale down
- Decision: what the reconciler wants done for one container
"""

from __future__ import annotations
from typing import Optional, List, Dict
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum


# ── Enums ──────────────────────────────────────────────────

class Action(str, Enum):
    ENSURE_IMAGE = "ensure_image"              # Only the image is missing
    CREATE = "create"                          # No container with that name
    START = "start"                            # Exists, stopped, unchanged
    RECREATE_AND_START = "recreate_and_start"  # Image or run args drifted
    ATTACH_ONLY = "attach_only"                # Running, attach requested
    ALREADY_RUNNING = "already_running"        # Running, nothing to do
    NOOP = "noop"


class ImageStep(str, Enum):
    BUILD = "build"
    PULL = "pull"


class Intent(str, Enum):
    UP = "up"          # create/recreate and run
    CREATE = "create"  # create/recreate, never start
    START = "start"    # start what exists, no drift checks


class Direction(str, Enum):
    STARTUP = "startup"    # ascending placement
    TEARDOWN = "teardown"  # exact reverse of the ascending order


class Group(str, Enum):
    DECLARED = "declared"  # ContainerSpecs from the config source
    CLEANUP = "cleanup"    # leftovers from a larger previous scale


# ── Run Arguments ──────────────────────────────────────────

class RunArgs(BaseModel):
    """Creation arguments, mapped onto docker's containers.create()."""
    model_config = ConfigDict(frozen=True)

    command: List[str] = Field(default_factory=list)
    entrypoint: List[str] = Field(default_factory=list)
    environment: Dict[str, str] = Field(default_factory=dict)
    ports: List[str] = Field(default_factory=list, description="host:container[/proto]")
    volumes: List[str] = Field(default_factory=list, description="src:dst[:mode]")
    links: Dict[str, str] = Field(default_factory=dict, description="container name -> alias")
    hostname: Optional[str] = None
    network: Optional[str] = None
    user: Optional[str] = None
    working_dir: Optional[str] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    restart: Optional[str] = None
    extra_hosts: List[str] = Field(default_factory=list, description="host:ip")
    privileged: bool = False


# ── Container Spec ─────────────────────────────────────────

class ContainerSpec(BaseModel):
    """
    One declared container instance.
    Built once per invocation by the settings parser, never mutated.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    service_type: str
    instance_number: int = 1
    project_name: str
    placement: int = 0
    image: str = ""
    build: Optional[str] = Field(default=None, description="Build context path")
    run_args: RunArgs = Field(default_factory=RunArgs)
    hooks: Dict[str, str] = Field(default_factory=dict, description="hook name -> shell command")

    def environment(self) -> Dict[str, str]:
        """Per-container variables for hooks and runtime invocations."""
        return {
            "CAPITAN_PROJECT_NAME": self.project_name,
            "CAPITAN_CONTAINER_NAME": self.name,
            "CAPITAN_CONTAINER_SERVICE_TYPE": self.service_type,
            "CAPITAN_CONTAINER_INSTANCE_NUMBER": str(self.instance_number),
        }


# ── Observed State ─────────────────────────────────────────

class ObservedState(BaseModel):
    """What the engine reports right now. Never cached across decisions."""
    exists: bool = False
    running: bool = False
    image_id: str = ""
    run_signature: str = ""
    local_image_id: str = ""  # empty = declared image not present locally


# ── Decision ───────────────────────────────────────────────

class Decision(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: Action
    image_step: Optional[ImageStep] = None
    start: bool = False  # Create / Recreate chained with Start
    reason: str = ""


# ── Project ────────────────────────────────────────────────

class ProjectConfig(BaseModel):
    """Everything the config source declared, plus discovered leftovers."""
    project_name: str
    project_separator: str = "_"
    container_list: List[ContainerSpec] = Field(default_factory=list)
    cleanup_list: List[ContainerSpec] = Field(default_factory=list)
    hooks: Dict[str, str] = Field(default_factory=dict, description="project-level hooks")

    def environment(self) -> Dict[str, str]:
        return {"CAPITAN_PROJECT_NAME": self.project_name}

    def participants(self, *groups: Group) -> List[ContainerSpec]:
        """Concatenate the requested groups, declared first."""
        result: List[ContainerSpec] = []
        if Group.DECLARED in groups:
            result.extend(self.container_list)
        if Group.CLEANUP in groups:
            result.extend(self.cleanup_list)
        return result

    def for_service(self, service_type: str) -> "ProjectConfig":
        """Copy restricted to one service type (used by `scale`)."""
        return self.model_copy(update={
            "container_list": [c for c in self.container_list if c.service_type == service_type],
            "cleanup_list": [c for c in self.cleanup_list if c.service_type == service_type],
        })
