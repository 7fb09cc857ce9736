"""
capitan: deploy and orchestrate docker containers.

Usage:
  capitan [-c CMD] [-d] [--dry-run] [-f FILTER] <command> [options]

The config command (default ./capitan.cfg.sh) is run with the command name
and any unrecognised arguments, and must print the project definition.
Exit code 0 on success, 1 on the first failed action, hook or config error.
"""

import sys
import logging
import argparse
from typing import Optional, List, Dict, Any

from .commands import CommandRunner
from .config import CONFIG_COMMAND, LOG_LEVEL, LOG_FORMAT, DEBUG_LOG_FORMAT
from .errors import CapitanError
from .runtime import DockerRuntime
from .settings_parser import SettingsParser, with_cleanup

logger = logging.getLogger("capitan")

# commands whose participating sets include the cleanup list
NEEDS_CLEANUP = {"up", "create", "start", "scale", "restart", "stop", "kill", "rm", "ps", "logs", "stats"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="capitan", description="Deploy and orchestrate docker containers")
    parser.add_argument("-c", "--cmd", default=CONFIG_COMMAND, help="Command to obtain config from")
    parser.add_argument("-d", "--debug", action="store_true", help="Print extra log messages")
    parser.add_argument("--dry-run", "--dry", dest="dry_run", action="store_true",
                        help="Preview outcome, no changes will be made")
    parser.add_argument("-f", "--filter", default="", help="Run action on a specific container or service only")

    sub = parser.add_subparsers(dest="command", metavar="<command>")
    sub.required = True

    up = sub.add_parser("up", help="Create then run or update containers")
    up.add_argument("-a", "--attach", action="store_true", help="Attach to container output")

    sub.add_parser("create", help="Create containers, but don't run them")

    start = sub.add_parser("start", help="Start stopped containers")
    start.add_argument("-a", "--attach", action="store_true", help="Attach to container output")

    scale = sub.add_parser("scale", help="Bring a service to its declared number of instances")
    scale.add_argument("service", help="Service type to scale")

    restart = sub.add_parser("restart", help="Restart containers")
    restart.add_argument("-t", "--time", type=int, default=None, help="Seconds to wait before killing")

    stop = sub.add_parser("stop", help="Stop running containers")
    stop.add_argument("-t", "--time", type=int, default=None, help="Seconds to wait before killing")

    kill = sub.add_parser("kill", help="Kill running containers using SIGKILL or a specified signal")
    kill.add_argument("-s", "--signal", default=None, help="Signal to send")

    rm = sub.add_parser("rm", help="Remove stopped containers")
    rm.add_argument("-f", "--force", action="store_true", help="Remove running containers too")
    rm.add_argument("-v", "--volumes", action="store_true", help="Remove anonymous volumes")

    ps = sub.add_parser("ps", help="Show container status")
    ps.add_argument("-a", "--all", action="store_true", help="Include stopped containers")

    sub.add_parser("ip", help="Show container ip addresses")
    sub.add_parser("build", help="Build any containers with 'build' set")
    sub.add_parser("pull", help="Pull all images defined in project")
    sub.add_parser("logs", help="Stream container logs")
    sub.add_parser("stats", help="Show stats for all containers in project")
    sub.add_parser("show", help="Print config as interpreted by capitan")
    return parser


def setup_logging(debug: bool = False):
    level = logging.DEBUG if debug or LOG_LEVEL == "DEBUG" else getattr(logging, LOG_LEVEL, logging.INFO)
    logging.basicConfig(
        level=level,
        format=DEBUG_LOG_FORMAT if level == logging.DEBUG else LOG_FORMAT,
        stream=sys.stdout,
        force=True,
    )
    logging.getLogger("docker").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def teardown_args(ns: argparse.Namespace) -> Dict[str, Any]:
    """Map command options onto runtime keyword args."""
    args: Dict[str, Any] = {}
    if getattr(ns, "time", None) is not None:
        args["timeout"] = ns.time
    if getattr(ns, "signal", None):
        args["signal"] = ns.signal
    if getattr(ns, "force", False):
        args["force"] = True
    if getattr(ns, "volumes", False):
        args["v"] = True
    if getattr(ns, "all", False):
        args["all"] = True
    return args


def dispatch(runner: CommandRunner, ns: argparse.Namespace):
    command = ns.command
    if command == "scale":
        return runner.scale(ns.service)
    if command in ("restart", "stop", "kill", "rm", "ps"):
        return getattr(runner, command)(teardown_args(ns))
    return getattr(runner, command)()


def main(argv: Optional[List[str]] = None, runtime=None) -> int:
    parser = build_parser()
    ns, extra = parser.parse_known_args(argv)
    setup_logging(ns.debug)

    if ns.dry_run:
        logger.info("Previewing changes...\n")

    try:
        project = SettingsParser(ns.cmd, [ns.command, *extra], ns.filter).run()
        runtime = runtime or DockerRuntime()
        if ns.command in NEEDS_CLEANUP:
            existing = runtime.list_project_containers(project.project_name)
            project = with_cleanup(project, existing, ns.filter)
        runner = CommandRunner(
            project, runtime,
            dry_run=ns.dry_run,
            attach=getattr(ns, "attach", False),
        )
        dispatch(runner, ns)
    except CapitanError as e:
        logger.error(f"{ns.command.capitalize()} failed: {e}")
        return 1
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return 1
    return 0
