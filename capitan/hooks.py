"""
Capitan - Hook Runner
══════════════════════
Blocking `before.<command>` / `after.<command>` shell hooks.

A hook can be declared once for the project (`global hook ...`) and per
container (`<service> hook ...`). run() executes the project hook first,
then every declared container's hook in startup order, each with that
container's CAPITAN_* variables in its environment. No registered hook
counts as success.
"""

import os
import logging
import subprocess
from typing import Dict, Optional

from .config import HOOK_SHELL
from .errors import HookFailure
from .models import ProjectConfig
from .sequencer import placement_order

logger = logging.getLogger(__name__)


class HookRunner:

    def __init__(self, shell: str = HOOK_SHELL, dry_run: bool = False):
        self.shell = shell
        self.dry_run = dry_run

    def _execute(self, hook_name: str, owner: str, command: str, env: Dict[str, str]) -> Optional[int]:
        """Run one hook command. Returns the exit code (None = not started)."""
        logger.info(f"[Hooks] Running {hook_name} for {owner}")
        if self.dry_run:
            return 0
        merged = dict(os.environ)
        merged.update(env)
        try:
            proc = subprocess.run([self.shell, "-c", command], env=merged)
        except OSError as e:
            logger.error(f"[Hooks] Could not run {hook_name} for {owner}: {e}")
            return None
        return proc.returncode

    def run(self, hook_name: str, project: ProjectConfig) -> bool:
        """True when every registered hook for `hook_name` exited 0."""
        targets = []
        if hook_name in project.hooks:
            targets.append((project.project_name, project.hooks[hook_name], project.environment()))
        for spec in placement_order(project.container_list):
            if hook_name in spec.hooks:
                targets.append((spec.name, spec.hooks[hook_name], spec.environment()))

        for owner, command, env in targets:
            code = self._execute(hook_name, owner, command, env)
            if code != 0:
                logger.error(f"[Hooks] {hook_name} failed for {owner} (exit {code})")
                return False
        return True

    def require(self, hook_name: str, project: ProjectConfig):
        """Like run(), but raises HookFailure instead of returning False."""
        if not self.run(hook_name, project):
            raise HookFailure(hook_name, project.project_name)
