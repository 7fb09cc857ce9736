"""
Capitan - Settings Parser
══════════════════════════
Runs the config command (default ./capitan.cfg.sh) and turns its output
into a ProjectConfig.

Output format, one directive per line:

    global project shop
    global hook before.up ./migrate.sh
    db     image postgres:16
    db     env POSTGRES_PASSWORD=secret
    web    build ./web
    web    scale 2
    web    port 8080:80
    web    link db
    web    hook after.up curl -fs http://localhost:8080/health

Blank lines and lines starting with '#' are ignored. Placement defaults to
the order in which services first appear.
"""

import os
import shlex
import logging
import subprocess
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Sequence, Any

from .config import CONFIG_COMMAND, CONFIG_TIMEOUT, DEFAULT_PROJECT_SEPARATOR
from .errors import ConfigError
from .models import ContainerSpec, ProjectConfig, RunArgs

logger = logging.getLogger(__name__)


# ── Service Declaration ───────────────────────────────────

@dataclass
class ServiceDecl:
    """Mutable accumulator for one service while lines are parsed."""
    name: str
    order: int
    image: str = ""
    build: Optional[str] = None
    placement: Optional[int] = None
    scale: int = 1
    command: List[str] = field(default_factory=list)
    entrypoint: List[str] = field(default_factory=list)
    environment: Dict[str, str] = field(default_factory=dict)
    ports: List[str] = field(default_factory=list)
    volumes: List[str] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    extra_hosts: List[str] = field(default_factory=list)
    options: Dict[str, Any] = field(default_factory=dict)  # hostname, network, ...
    hooks: Dict[str, str] = field(default_factory=dict)


_SCALAR_OPTIONS = {
    "hostname": "hostname",
    "network": "network",
    "user": "user",
    "workdir": "working_dir",
    "restart": "restart",
}


def _key_value(value: str, line_number: int) -> tuple:
    key, sep, val = value.partition("=")
    if not sep or not key:
        raise ConfigError(f"expected KEY=VALUE, got '{value}'", line_number)
    return key, val


def _non_negative_int(value: str, directive: str, line_number: int) -> int:
    try:
        number = int(value)
    except ValueError:
        raise ConfigError(f"{directive} must be an integer, got '{value}'", line_number)
    if number < 0:
        raise ConfigError(f"{directive} must not be negative", line_number)
    return number


# ── Parser ────────────────────────────────────────────────

class SettingsParser:

    def __init__(self, command: str = CONFIG_COMMAND, args: Sequence[str] = (), name_filter: str = ""):
        self.command = command
        self.args = list(args)
        self.name_filter = name_filter

    def run(self) -> ProjectConfig:
        """Execute the config command and parse what it prints."""
        return self.parse(self.read_output())

    def read_output(self) -> str:
        try:
            cmd = shlex.split(self.command) + self.args
        except ValueError as e:
            raise ConfigError(f"invalid config command '{self.command}': {e}")
        if not cmd:
            raise ConfigError("empty config command")

        logger.debug(f"[Settings] Running config command: {cmd}")
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, timeout=CONFIG_TIMEOUT)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ConfigError(f"could not run config command '{self.command}': {e}")
        if proc.returncode != 0:
            detail = (proc.stderr or proc.stdout).strip()[:500]
            raise ConfigError(f"config command exited {proc.returncode}: {detail}")
        return proc.stdout

    def parse(self, text: str) -> ProjectConfig:
        project_name = os.path.basename(os.getcwd()) or "capitan"
        separator = DEFAULT_PROJECT_SEPARATOR
        project_hooks: Dict[str, str] = {}
        services: Dict[str, ServiceDecl] = {}

        for line_number, raw in enumerate(text.splitlines(), start=1):
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            parts = line.split(None, 2)
            if len(parts) < 2:
                raise ConfigError(f"incomplete directive '{line}'", line_number)
            owner, directive = parts[0], parts[1]
            value = parts[2].strip() if len(parts) > 2 else ""

            if owner == "global":
                if directive == "project":
                    project_name = value
                elif directive == "project_sep":
                    separator = value
                elif directive == "hook":
                    name, command = self._hook(value, line_number)
                    project_hooks[name] = command
                else:
                    raise ConfigError(f"unknown global directive '{directive}'", line_number)
                continue

            decl = services.get(owner)
            if decl is None:
                decl = services[owner] = ServiceDecl(name=owner, order=len(services) + 1)
            self._apply(decl, directive, value, line_number)

        if not project_name:
            raise ConfigError("project name must not be empty")

        specs = self._expand(project_name, separator, services)
        if self.name_filter:
            specs = [s for s in specs if self.name_filter in (s.name, s.service_type)]

        logger.debug(f"[Settings] Parsed {len(specs)} containers for project {project_name}")
        return ProjectConfig(
            project_name=project_name,
            project_separator=separator,
            container_list=specs,
            hooks=project_hooks,
        )

    # ── Directives ────────────────────────────────────────

    @staticmethod
    def _hook(value: str, line_number: int) -> tuple:
        parts = value.split(None, 1)
        if len(parts) < 2:
            raise ConfigError("hook needs a name and a command", line_number)
        return parts[0], parts[1]

    def _apply(self, decl: ServiceDecl, directive: str, value: str, line_number: int):
        if directive not in ("privileged",) and not value:
            raise ConfigError(f"'{directive}' needs a value", line_number)

        if directive == "image":
            decl.image = value
        elif directive == "build":
            decl.build = value
        elif directive == "placement":
            decl.placement = _non_negative_int(value, "placement", line_number)
        elif directive == "scale":
            decl.scale = _non_negative_int(value, "scale", line_number)
        elif directive in ("command", "entrypoint"):
            try:
                setattr(decl, directive, shlex.split(value))
            except ValueError as e:
                raise ConfigError(f"bad {directive}: {e}", line_number)
        elif directive == "env":
            key, val = _key_value(value, line_number)
            decl.environment[key] = val
        elif directive == "label":
            key, val = _key_value(value, line_number)
            decl.labels[key] = val
        elif directive == "port":
            decl.ports.append(value)
        elif directive == "volume":
            decl.volumes.append(value)
        elif directive == "link":
            decl.links.append(value)
        elif directive == "add-host":
            if ":" not in value:
                raise ConfigError(f"expected host:ip, got '{value}'", line_number)
            decl.extra_hosts.append(value)
        elif directive == "privileged":
            decl.options["privileged"] = value.lower() not in ("false", "0", "no")
        elif directive in _SCALAR_OPTIONS:
            decl.options[_SCALAR_OPTIONS[directive]] = value
        elif directive == "hook":
            name, command = self._hook(value, line_number)
            decl.hooks[name] = command
        else:
            raise ConfigError(f"unknown directive '{directive}' for '{decl.name}'", line_number)

    # ── Expansion ─────────────────────────────────────────

    @staticmethod
    def container_name(project: str, separator: str, service: str, instance: int) -> str:
        return f"{project}{separator}{service}{separator}{instance}"

    def _expand(self, project: str, separator: str, services: Dict[str, ServiceDecl]) -> List[ContainerSpec]:
        specs = []
        for decl in services.values():
            image = decl.image
            if not image and decl.build:
                image = f"{project}{separator}{decl.name}"
            if not image:
                raise ConfigError(f"service '{decl.name}' needs an image or a build path")

            links = {}
            for link in decl.links:
                target, _, alias = link.partition(":")
                if target in services:
                    links[self.container_name(project, separator, target, 1)] = alias or target
                else:
                    links[target] = alias or target

            run_args = RunArgs(
                command=decl.command,
                entrypoint=decl.entrypoint,
                environment=decl.environment,
                ports=decl.ports,
                volumes=decl.volumes,
                links=links,
                labels=decl.labels,
                extra_hosts=decl.extra_hosts,
                **decl.options,
            )
            placement = decl.placement if decl.placement is not None else decl.order
            for instance in range(1, decl.scale + 1):
                specs.append(ContainerSpec(
                    name=self.container_name(project, separator, decl.name, instance),
                    service_type=decl.name,
                    instance_number=instance,
                    project_name=project,
                    placement=placement,
                    image=image,
                    build=decl.build,
                    run_args=run_args,
                    hooks=decl.hooks,
                ))
        return specs


# ── Cleanup Discovery ─────────────────────────────────────

def with_cleanup(project: ProjectConfig, existing: List[Dict[str, Any]], name_filter: str = "") -> ProjectConfig:
    """
    Add the project's engine containers that are no longer declared (scale
    shrank or service removed) as the cleanup list.
    """
    declared = {s.name for s in project.container_list}
    placements = {s.service_type: s.placement for s in project.container_list}
    leftovers = []
    for entry in existing:
        name = entry["name"]
        if name in declared:
            continue
        service_type = entry.get("service_type", "")
        if name_filter and name_filter not in (name, service_type):
            continue
        leftovers.append(ContainerSpec(
            name=name,
            service_type=service_type,
            instance_number=entry.get("instance_number", 0),
            project_name=project.project_name,
            placement=placements.get(service_type, 0),
        ))
    leftovers.sort(key=lambda s: (s.service_type, s.instance_number))
    if leftovers:
        logger.debug(f"[Settings] {len(leftovers)} containers to scale down")
    return project.model_copy(update={"cleanup_list": leftovers})
