"""
Capitan - Commands
═══════════════════
One method per CLI command. The mutating ones follow the same flow:

  before.<cmd> hook -> cleanup pre-pass -> sequencer pass -> after.<cmd> hook

A failing before-hook stops the command before any reconciliation; a failing
after-hook raises after the actions were applied, without rolling back.
Which container groups a command traverses comes from PARTICIPATION.
"""

import sys
import logging
from typing import Optional, Dict, Any, Tuple, IO

import yaml

from .errors import CapitanError
from .hooks import HookRunner
from .models import Group, ProjectConfig
from .sequencer import LifecycleSequencer
from .shutdown import ShutdownCoordinator

logger = logging.getLogger(__name__)

DECLARED = (Group.DECLARED,)
CLEANUP = (Group.CLEANUP,)
ALL = (Group.DECLARED, Group.CLEANUP)

PARTICIPATION: Dict[str, Tuple[Group, ...]] = {
    "up": DECLARED,
    "create": DECLARED,
    "start": DECLARED,
    "scale": DECLARED,
    "restart": DECLARED,
    "build": DECLARED,
    "pull": DECLARED,
    "ip": DECLARED,
    "stop": ALL,
    "kill": ALL,
    "rm": ALL,
    "ps": ALL,
    "logs": ALL,
    "stats": ALL,
    "cleanup": CLEANUP,
    "shutdown": ALL,
}


class CommandRunner:

    def __init__(
        self,
        project: ProjectConfig,
        runtime,
        dry_run: bool = False,
        attach: bool = False,
        participation: Optional[Dict[str, Tuple[Group, ...]]] = None,
        hooks: Optional[HookRunner] = None,
        out: Optional[IO[str]] = None,
        install_signals: bool = True,
    ):
        self.project = project
        self.runtime = runtime
        self.dry_run = dry_run
        self.attach = attach
        self.participation = dict(PARTICIPATION)
        if participation:
            self.participation.update(participation)
        self.hooks = hooks or HookRunner(dry_run=dry_run)
        self.out = out or sys.stdout
        self.install_signals = install_signals
        self.sequencer = LifecycleSequencer(runtime, dry_run=dry_run, out=out)
        self.coordinator: Optional[ShutdownCoordinator] = None

    # ── Helpers ───────────────────────────────────────────

    def participants(self, command: str, project: Optional[ProjectConfig] = None):
        project = project or self.project
        return project.participants(*self.participation.get(command, DECLARED))

    def _before(self, command: str):
        self.hooks.require(f"before.{command}", self.project)

    def _after(self, command: str):
        self.hooks.require(f"after.{command}", self.project)

    def _cleanup(self, project: Optional[ProjectConfig] = None):
        """rm -f leftovers from a larger scale. Failure is only a warning."""
        try:
            self.sequencer.rm(self.participants("cleanup", project), {"force": True})
        except CapitanError as e:
            logger.warning(f"Failed to scale down containers: {e}")

    def _watch_signals(self):
        """Coordinator for an attached live run; None otherwise."""
        if not self.attach or self.dry_run:
            return None
        targets = self.participants("shutdown")
        self.coordinator = ShutdownCoordinator(
            stop_all=lambda: self.sequencer.stop(targets),
            kill_all=lambda: self.sequencer.kill(targets),
        )
        if self.install_signals:
            self.coordinator.install()
        return self.coordinator.completion

    def _unwatch_signals(self):
        if self.coordinator is not None and self.install_signals:
            self.coordinator.uninstall()

    # ── Startup commands ──────────────────────────────────

    def up(self):
        completion = self._watch_signals()
        try:
            self._before("up")
            self._cleanup()
            self.sequencer.up(self.participants("up"), attach=self.attach, completion=completion)
            self._after("up")
        finally:
            self._unwatch_signals()

    def create(self):
        self._before("create")
        self._cleanup()
        self.sequencer.create(self.participants("create"))
        self._after("create")

    def start(self):
        completion = self._watch_signals()
        try:
            self._before("start")
            self._cleanup()
            self.sequencer.start(self.participants("start"), attach=self.attach, completion=completion)
            self._after("start")
        finally:
            self._unwatch_signals()

    def scale(self, service_type: str):
        """Bring one service to its declared instance count."""
        scoped = self.project.for_service(service_type)
        if not scoped.container_list and not scoped.cleanup_list:
            logger.warning(f"No containers for service '{service_type}'")
        self._before("scale")
        self._cleanup(scoped)
        self.sequencer.up(self.participants("scale", scoped), attach=False)
        self._after("scale")

    def restart(self, args: Optional[Dict[str, Any]] = None):
        self._before("restart")
        self._cleanup()
        self.sequencer.restart(self.participants("restart"), args)
        self._after("restart")

    def build(self):
        self._before("build")
        self.sequencer.build(self.participants("build"))
        self._after("build")

    def pull(self):
        self.sequencer.pull(self.participants("pull"))

    # ── Teardown commands ─────────────────────────────────

    def stop(self, args: Optional[Dict[str, Any]] = None):
        self._before("stop")
        self.sequencer.stop(self.participants("stop"), args)
        self._after("stop")

    def kill(self, args: Optional[Dict[str, Any]] = None):
        self._before("kill")
        self.sequencer.kill(self.participants("kill"), args)
        self._after("kill")

    def rm(self, args: Optional[Dict[str, Any]] = None):
        self._before("rm")
        self.sequencer.rm(self.participants("rm"), args)
        self._after("rm")

    # ── Reporting ─────────────────────────────────────────

    def ps(self, args: Optional[Dict[str, Any]] = None):
        return self.sequencer.ps(self.participants("ps"), args)

    def ip(self):
        return self.sequencer.ip(self.participants("ip"))

    def logs(self):
        self.sequencer.logs(self.participants("logs"))

    def stats(self):
        return self.sequencer.stats(self.participants("stats"))

    def show(self) -> str:
        """Print the config as interpreted, in YAML."""
        data = self.project.model_dump(mode="json")
        text = yaml.dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False)
        self.out.write(text)
        return text
