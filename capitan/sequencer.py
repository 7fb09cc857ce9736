"""
Capitan - Lifecycle Sequencer
══════════════════════════════
Drives one command across a container list:

  1. order the list (ascending placement, or its exact reverse for teardown)
  2. per container: query fresh state -> decide() -> dispatch synchronously
  3. attach streams run as background handles in an AttachWaitSet
  4. at the end, block on the wait-set; an attached live run first waits for
     the shutdown completion signal, then closes any stream still open.
     Once shutdown has fired, remaining containers are skipped

A RuntimeCallError aborts the pass. AlreadyAbsent during teardown is logged
and the pass continues. Dry run computes and logs every decision but issues
no mutating call.
"""

import logging
from typing import Optional, List, Dict, Any, Callable, IO

from .errors import AlreadyAbsent, CapitanError
from .models import Action, ContainerSpec, Decision, Direction, ImageStep, Intent
from .reconcile import decide

logger = logging.getLogger(__name__)


# ── Ordering ──────────────────────────────────────────────

def placement_order(specs: List[ContainerSpec], direction: Direction = Direction.STARTUP) -> List[ContainerSpec]:
    """
    Stable ascending sort by placement; TEARDOWN reverses that list as a
    whole instead of sorting descending, so ties come out reversed too.
    """
    ordered = sorted(specs, key=lambda s: s.placement)
    if direction == Direction.TEARDOWN:
        ordered.reverse()
    return ordered


# ── Attach Wait-Set ───────────────────────────────────────

class AttachWaitSet:
    """Collects stream handles; wait_all() is the only ordering guarantee."""

    def __init__(self):
        self._handles = []

    def add(self, handle):
        self._handles.append(handle)

    def __len__(self) -> int:
        return len(self._handles)

    def wait_all(self):
        for handle in self._handles:
            handle.wait()

    def cancel_all(self):
        for handle in self._handles:
            handle.cancel()


# ── Sequencer ─────────────────────────────────────────────

class LifecycleSequencer:
    """
    One instance per command invocation.

    `runtime` is anything exposing the DockerRuntime capabilities; tests pass
    a recording fake.
    """

    def __init__(self, runtime, dry_run: bool = False, out: Optional[IO[str]] = None):
        self.runtime = runtime
        self.dry_run = dry_run
        self.out = out
        self.decisions: List[Dict[str, Any]] = []

    # ── Decision helpers ──────────────────────────────────

    def _record(self, spec: ContainerSpec, decision: Decision):
        self.decisions.append({"name": spec.name, "action": decision.action, "image_step": decision.image_step})

    def _ensure_image(self, spec: ContainerSpec, step: ImageStep):
        logger.warning(f"[Sequencer] Unable to find image {spec.image} locally")
        if step == ImageStep.BUILD:
            logger.info(f"[Sequencer] Building image for {spec.name}")
            if not self.dry_run:
                self.runtime.build(spec)
        else:
            logger.info(f"[Sequencer] Pulling image {spec.image}")
            if not self.dry_run:
                self.runtime.pull(spec.image)

    def resolve(self, spec: ContainerSpec, attach: bool, intent: Intent) -> Decision:
        """Query, decide, and satisfy any image prerequisite before the action."""
        decision = decide(spec, self.runtime.query(spec), attach=attach, intent=intent)
        if decision.image_step is not None:
            self._ensure_image(spec, decision.image_step)
            if not self.dry_run:
                # the image id just changed, decide against the new one
                decision = decide(spec, self.runtime.query(spec), attach=attach, intent=intent)
        self._record(spec, decision)
        return decision

    def _attach(self, spec: ContainerSpec, waitset: AttachWaitSet):
        if self.dry_run:
            return
        waitset.add(self.runtime.attach_stream(spec.name, self.out))

    def _start(self, spec: ContainerSpec, attach: bool, waitset: AttachWaitSet):
        if self.dry_run:
            return
        self.runtime.start(spec.name)
        if attach:
            self._attach(spec, waitset)

    def _dispatch(self, spec: ContainerSpec, decision: Decision, attach: bool, waitset: AttachWaitSet):
        action = decision.action

        if action == Action.CREATE:
            logger.info(f"[Sequencer] Creating {spec.name}")
            if not self.dry_run:
                self.runtime.create(spec)
            if decision.start:
                logger.info(f"[Sequencer] Starting {spec.name}")
                self._start(spec, attach, waitset)

        elif action == Action.RECREATE_AND_START:
            logger.info(f"[Sequencer] Removing ({decision.reason}): {spec.name}")
            if not self.dry_run:
                try:
                    self.runtime.remove(spec.name, {"force": True})
                except AlreadyAbsent:
                    logger.info(f"[Sequencer] Already gone: {spec.name}")
                self.runtime.create(spec)
            if decision.start:
                logger.info(f"[Sequencer] Starting {spec.name}")
                self._start(spec, attach, waitset)

        elif action in (Action.ALREADY_RUNNING, Action.ATTACH_ONLY):
            logger.info(f"[Sequencer] Already running {spec.name}")
            if action == Action.ATTACH_ONLY:
                logger.info(f"[Sequencer] Attaching to {spec.name}")
                self._attach(spec, waitset)

        elif action == Action.START:
            logger.info(f"[Sequencer] Starting {spec.name}")
            self._start(spec, attach, waitset)

        elif action == Action.ENSURE_IMAGE:
            logger.info(f"[Sequencer] Image ready for {spec.name}")

        elif action == Action.NOOP:
            logger.info(f"[Sequencer] Nothing to do for {spec.name} ({decision.reason})")

    @staticmethod
    def _shutting_down(completion) -> bool:
        if completion is not None and completion.fired:
            logger.info("[Sequencer] Shutdown in progress, skipping remaining containers")
            return True
        return False

    def _finish(self, waitset: AttachWaitSet, attach: bool, completion=None):
        if completion is not None and attach and not self.dry_run:
            completion.wait()
            # everything is stopped or killed by now; close streams still hanging on
            waitset.cancel_all()
        waitset.wait_all()

    # ── Startup passes ────────────────────────────────────

    def up(self, specs: List[ContainerSpec], attach: bool = False, completion=None):
        """Create, start, recreate or attach every container as needed."""
        waitset = AttachWaitSet()
        for spec in placement_order(specs):
            if self._shutting_down(completion):
                break
            decision = self.resolve(spec, attach, Intent.UP)
            self._dispatch(spec, decision, attach, waitset)
        self._finish(waitset, attach, completion)

    def create(self, specs: List[ContainerSpec]):
        waitset = AttachWaitSet()
        for spec in placement_order(specs):
            decision = self.resolve(spec, False, Intent.CREATE)
            self._dispatch(spec, decision, False, waitset)

    def start(self, specs: List[ContainerSpec], attach: bool = False, completion=None):
        waitset = AttachWaitSet()
        for spec in placement_order(specs):
            if self._shutting_down(completion):
                break
            decision = self.resolve(spec, attach, Intent.START)
            self._dispatch(spec, decision, attach, waitset)
        self._finish(waitset, attach, completion)

    def restart(self, specs: List[ContainerSpec], args: Optional[Dict[str, Any]] = None):
        for spec in placement_order(specs):
            logger.info(f"[Sequencer] Restarting {spec.name}")
            if not self.dry_run:
                self.runtime.restart(spec.name, args or {})

    def build(self, specs: List[ContainerSpec]):
        for spec in placement_order(specs):
            if not spec.build:
                continue
            logger.info(f"[Sequencer] Building {spec.name}")
            if not self.dry_run:
                self.runtime.build(spec)

    def pull(self, specs: List[ContainerSpec]):
        for spec in placement_order(specs):
            if spec.build or not spec.image:
                continue
            logger.info(f"[Sequencer] Pulling {spec.image} for {spec.name}")
            if not self.dry_run:
                self.runtime.pull(spec.image)

    # ── Teardown passes ───────────────────────────────────

    def _teardown(
        self,
        specs: List[ContainerSpec],
        verb: str,
        skip: Callable[[ContainerSpec], bool],
        skip_message: str,
        call: Callable[[str], None],
    ):
        for spec in placement_order(specs, Direction.TEARDOWN):
            if skip(spec):
                logger.info(f"[Sequencer] {skip_message}: {spec.name}")
                continue
            logger.info(f"[Sequencer] {verb} {spec.name}")
            if self.dry_run:
                continue
            try:
                call(spec.name)
            except AlreadyAbsent:
                logger.info(f"[Sequencer] Already gone: {spec.name}")

    def stop(self, specs: List[ContainerSpec], args: Optional[Dict[str, Any]] = None):
        self._teardown(
            specs, "Stopping",
            lambda s: not self.runtime.is_running(s.name), "Already dead",
            lambda name: self.runtime.stop(name, args or {}),
        )

    def kill(self, specs: List[ContainerSpec], args: Optional[Dict[str, Any]] = None):
        self._teardown(
            specs, "Killing",
            lambda s: not self.runtime.is_running(s.name), "Already dead",
            lambda name: self.runtime.kill(name, args or {}),
        )

    def rm(self, specs: List[ContainerSpec], args: Optional[Dict[str, Any]] = None):
        self._teardown(
            specs, "Removing",
            lambda s: not self.runtime.exists(s.name), "Container doesn't exist",
            lambda name: self.runtime.remove(name, args or {}),
        )

    # ── Reporting ─────────────────────────────────────────

    def ip(self, specs: List[ContainerSpec]) -> Dict[str, str]:
        result = {}
        for spec in placement_order(specs):
            address = self.runtime.ip(spec.name)
            logger.info(f"{spec.name}: {address}")
            result[spec.name] = address
        return result

    def ps(self, specs: List[ContainerSpec], args: Optional[Dict[str, Any]] = None) -> List[Dict[str, str]]:
        rows = self.runtime.ps([s.name for s in placement_order(specs)], args or {})
        logger.info(f"{'NAME':<30} {'CONTAINER ID':<14} {'IMAGE':<30} STATUS")
        for row in rows:
            logger.info(f"{row['name']:<30} {row['id']:<14} {row['image']:<30} {row['status']}")
        return rows

    def stats(self, specs: List[ContainerSpec]) -> List[Dict[str, Any]]:
        rows = self.runtime.stats([s.name for s in placement_order(specs)])
        logger.info(f"{'NAME':<30} {'CPU %':>7} {'MEM MB':>10} {'LIMIT MB':>10} {'NET RX':>12} {'NET TX':>12}")
        for row in rows:
            logger.info(
                f"{row['name']:<30} {row['cpu_percent']:>7} {row['memory_mb']:>10} "
                f"{row['memory_limit_mb']:>10} {row['network_rx_bytes']:>12} {row['network_tx_bytes']:>12}"
            )
        return rows

    def logs(self, specs: List[ContainerSpec]):
        """One log stream per container, awaited jointly."""
        waitset = AttachWaitSet()
        for spec in placement_order(specs):
            try:
                waitset.add(self.runtime.logs_stream(spec.name, self.out))
            except CapitanError as e:
                logger.error(f"[Sequencer] Error getting log for {spec.name}: {e}")
        waitset.wait_all()
