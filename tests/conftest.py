"""
Pytest Fixtures - reusable test components.

FakeRuntime mimics DockerRuntime in memory and records every call, so the
sequencer, shutdown coordinator and command layer run without a daemon.
"""

import sys
import threading
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Add repo root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from capitan.errors import AlreadyAbsent, RuntimeCallError
from capitan.models import ContainerSpec, ObservedState, ProjectConfig, RunArgs
from capitan.reconcile import run_signature


MUTATING = {"create", "start", "stop", "kill", "remove", "restart", "build", "pull"}


# ═══════════════════════════════════════════════════════════
# FAKE RUNTIME
# ═══════════════════════════════════════════════════════════

class FakeHandle:
    """Stream handle that finishes when release() is called."""

    def __init__(self, name: str, auto_release: bool = True):
        self.name = name
        self._done = threading.Event()
        self.cancelled = False
        if auto_release:
            self._done.set()

    def release(self):
        self._done.set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    def cancel(self):
        self.cancelled = True
        self._done.set()


class FakeRuntime:

    def __init__(self):
        self.containers: Dict[str, dict] = {}
        self.images: Dict[str, str] = {}
        self.calls: List[tuple] = []
        self.fail_on: set = set()
        self.handles: List[FakeHandle] = []
        self.auto_release = True
        self._lock = threading.Lock()
        self._image_counter = 0

    # ── setup helpers ─────────────────────────────────────

    def add_image(self, ref: str, image_id: Optional[str] = None) -> str:
        self._image_counter += 1
        self.images[ref] = image_id or f"sha256:img{self._image_counter}"
        return self.images[ref]

    def add_container(self, spec: ContainerSpec, running: bool = False,
                      image_id: Optional[str] = None, signature: Optional[str] = None):
        self.containers[spec.name] = {
            "running": running,
            "image_id": image_id if image_id is not None else self.images.get(spec.image, ""),
            "signature": signature if signature is not None else run_signature(spec),
        }

    def _record(self, op: str, target: str, *extra):
        with self._lock:
            self.calls.append((op, target) + extra)
        if (op, target) in self.fail_on:
            raise RuntimeCallError(op, target, Exception("boom"))

    @property
    def mutations(self) -> List[tuple]:
        return [c for c in self.calls if c[0] in MUTATING]

    def ops(self, op: str) -> List[str]:
        return [c[1] for c in self.calls if c[0] == op]

    # ── queries ───────────────────────────────────────────

    def local_image_id(self, ref: str) -> str:
        return self.images.get(ref, "")

    def query(self, spec: ContainerSpec) -> ObservedState:
        self._record("query", spec.name)
        state = self.containers.get(spec.name)
        if state is None:
            return ObservedState(local_image_id=self.local_image_id(spec.image))
        return ObservedState(
            exists=True,
            running=state["running"],
            image_id=state["image_id"],
            run_signature=state["signature"],
            local_image_id=self.local_image_id(spec.image),
        )

    def exists(self, name: str) -> bool:
        return name in self.containers

    def is_running(self, name: str) -> bool:
        return self.containers.get(name, {}).get("running", False)

    # ── lifecycle ─────────────────────────────────────────

    def create(self, spec: ContainerSpec):
        self._record("create", spec.name)
        self.containers[spec.name] = {
            "running": False,
            "image_id": self.images.get(spec.image, ""),
            "signature": run_signature(spec),
        }

    def start(self, name: str):
        self._record("start", name)
        self.containers[name]["running"] = True

    def _teardown(self, op: str, name: str, args):
        self._record(op, name, dict(args or {}))
        if name not in self.containers:
            raise AlreadyAbsent(name, op)

    def stop(self, name: str, args=None):
        self._teardown("stop", name, args)
        self.containers[name]["running"] = False

    def kill(self, name: str, args=None):
        self._teardown("kill", name, args)
        self.containers[name]["running"] = False

    def remove(self, name: str, args=None):
        self._teardown("remove", name, args)
        del self.containers[name]

    def restart(self, name: str, args=None):
        self._record("restart", name, dict(args or {}))

    def build(self, spec: ContainerSpec):
        self._record("build", spec.image)
        self.add_image(spec.image)

    def pull(self, ref: str):
        self._record("pull", ref)
        self.add_image(ref)

    # ── streams + reporting ───────────────────────────────

    def attach_stream(self, name: str, out=None) -> FakeHandle:
        self._record("attach", name)
        handle = FakeHandle(name, auto_release=self.auto_release)
        self.handles.append(handle)
        return handle

    def logs_stream(self, name: str, out=None) -> FakeHandle:
        self._record("logs", name)
        if name not in self.containers:
            raise RuntimeCallError("logs", name)
        handle = FakeHandle(name, auto_release=self.auto_release)
        self.handles.append(handle)
        return handle

    def ip(self, name: str) -> str:
        self._record("ip", name)
        return f"172.17.0.{len(self.calls)}"

    def ps(self, names, args=None):
        self._record("ps", ",".join(names))
        return [
            {"name": n, "id": n[:12], "image": "img", "status": "running" if self.is_running(n) else "exited"}
            for n in names if n in self.containers
        ]

    def stats(self, names):
        self._record("stats", ",".join(names))
        return [
            {"name": n, "cpu_percent": 0.0, "memory_mb": 1.0, "memory_limit_mb": 2.0,
             "network_rx_bytes": 0, "network_tx_bytes": 0}
            for n in names if self.is_running(n)
        ]

    def list_project_containers(self, project: str):
        return [
            {"name": n, "service_type": n.split("_")[1] if n.count("_") >= 2 else "",
             "instance_number": int(n.rsplit("_", 1)[-1]) if n.rsplit("_", 1)[-1].isdigit() else 0}
            for n in self.containers
        ]


# ═══════════════════════════════════════════════════════════
# SAMPLE DATA FIXTURES
# ═══════════════════════════════════════════════════════════

def make_spec(name: str, placement: int = 1, image: str = "nginx:latest", **kwargs) -> ContainerSpec:
    """ContainerSpec with sensible defaults for tests."""
    service = kwargs.pop("service_type", name)
    run_args = kwargs.pop("run_args", RunArgs())
    return ContainerSpec(
        name=name,
        service_type=service,
        instance_number=kwargs.pop("instance_number", 1),
        project_name=kwargs.pop("project_name", "proj"),
        placement=placement,
        image=image,
        run_args=run_args,
        **kwargs,
    )


@pytest.fixture
def runtime():
    """Empty in-memory runtime."""
    return FakeRuntime()


@pytest.fixture
def abc_specs():
    """A(placement=1), B(placement=2), C(placement=2) in declaration order."""
    return [
        make_spec("A", placement=1),
        make_spec("B", placement=2),
        make_spec("C", placement=2),
    ]


@pytest.fixture
def project(abc_specs):
    """ProjectConfig over the A/B/C specs, no cleanup list."""
    return ProjectConfig(project_name="proj", container_list=abc_specs)
