"""
Capitan - Runtime Adapter (Docker)
═══════════════════════════════════
Docker SDK integration for per-container primitives:
- Query container + local image state
- Create / Start / Stop / Kill / Remove / Restart
- Build images from a context dir, pull by reference
- Attach + log streams as background handles with a blocking wait()
- IP, ps and stats reporting

Uses docker.from_env() to connect to the host Docker daemon.
Every failure surfaces as RuntimeCallError; a missing container during a
teardown call surfaces as AlreadyAbsent.
"""

import sys
import codecs
import logging
import threading
from contextlib import contextmanager
from typing import Optional, List, Dict, Any, IO

import docker
from docker.errors import DockerException, NotFound, ImageNotFound, BuildError
from docker.utils import parse_repository_tag

from .config import (
    CONTAINER_STOP_TIMEOUT, DEFAULT_KILL_SIGNAL,
    LABEL_MANAGED, LABEL_PROJECT, LABEL_SERVICE_TYPE, LABEL_INSTANCE, LABEL_RUN_SIGNATURE,
)
from .errors import AlreadyAbsent, RuntimeCallError
from .models import ContainerSpec, ObservedState
from .reconcile import run_signature

logger = logging.getLogger(__name__)

_output_lock = threading.Lock()


# ── Stream Handle ─────────────────────────────────────────

class StreamHandle:
    """
    Copies a blocking docker output stream to `out` on a daemon thread.
    wait() blocks until the stream ends or disconnects; cancel() closes it.
    """

    def __init__(self, name: str, stream, out: Optional[IO[str]] = None):
        self.name = name
        self._stream = stream
        self._out = out or sys.stdout
        self._error: Optional[Exception] = None
        self._thread = threading.Thread(
            target=self._pump, name=f"stream-{name}", daemon=True
        )

    def start(self) -> "StreamHandle":
        self._thread.start()
        return self

    def _pump(self):
        pending = ""
        # frames can split a multi-byte character
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            for chunk in self._stream:
                if isinstance(chunk, bytes):
                    chunk = decoder.decode(chunk)
                pending += chunk
                *lines, pending = pending.split("\n")
                for line in lines:
                    self._emit(line)
            pending += decoder.decode(b"", final=True)
            if pending:
                self._emit(pending)
        except Exception as e:
            # a closed stream raises here as well
            self._error = e
            logger.debug(f"[Runtime] Stream for {self.name} ended: {e}")

    def _emit(self, line: str):
        with _output_lock:
            self._out.write(f"{self.name} | {line}\n")
            self._out.flush()

    @property
    def done(self) -> bool:
        return not self._thread.is_alive()

    @property
    def error(self) -> Optional[Exception]:
        return self._error

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the stream ends. Returns False on timeout."""
        self._thread.join(timeout)
        return self.done

    def cancel(self):
        close = getattr(self._stream, "close", None)
        if close is not None:
            try:
                close()
            except Exception as e:
                logger.debug(f"[Runtime] Closing stream for {self.name} failed: {e}")


# ── Argument Mapping ──────────────────────────────────────

def _parse_port(mapping: str):
    """'8080:80/tcp' -> ('80/tcp', 8080); '127.0.0.1:8080:80' -> ('80/tcp', ('127.0.0.1', 8080))."""
    parts = mapping.split(":")
    container = parts[-1]
    if "/" not in container:
        container = f"{container}/tcp"
    if len(parts) == 1:
        return container, None
    if len(parts) == 2:
        return container, int(parts[0]) if parts[0] else None
    host_ip, host_port = parts[0], parts[1]
    return container, (host_ip, int(host_port)) if host_port else (host_ip,)


def _parse_extra_host(entry: str):
    host, _, ip = entry.partition(":")
    return host, ip


def create_kwargs(spec: ContainerSpec) -> Dict[str, Any]:
    """Translate a ContainerSpec into docker's containers.create() keywords."""
    args = spec.run_args
    labels = dict(args.labels)
    labels.update({
        LABEL_MANAGED: "true",
        LABEL_PROJECT: spec.project_name,
        LABEL_SERVICE_TYPE: spec.service_type,
        LABEL_INSTANCE: str(spec.instance_number),
        LABEL_RUN_SIGNATURE: run_signature(spec),
    })

    kwargs: Dict[str, Any] = {
        "name": spec.name,
        "detach": True,
        "labels": labels,
        "environment": dict(args.environment),
        "privileged": args.privileged,
    }
    if args.command:
        kwargs["command"] = list(args.command)
    if args.entrypoint:
        kwargs["entrypoint"] = list(args.entrypoint)
    if args.ports:
        kwargs["ports"] = dict(_parse_port(p) for p in args.ports)
    if args.volumes:
        kwargs["volumes"] = list(args.volumes)
    if args.links:
        kwargs["links"] = dict(args.links)
    if args.extra_hosts:
        kwargs["extra_hosts"] = dict(_parse_extra_host(h) for h in args.extra_hosts)
    if args.restart:
        name, _, retries = args.restart.partition(":")
        policy: Dict[str, Any] = {"Name": name}
        if retries:
            policy["MaximumRetryCount"] = int(retries)
        kwargs["restart_policy"] = policy
    for field, key in (("hostname", "hostname"), ("network", "network"),
                       ("user", "user"), ("working_dir", "working_dir")):
        value = getattr(args, field)
        if value:
            kwargs[key] = value
    return kwargs


# ── Docker Runtime ────────────────────────────────────────

class DockerRuntime:
    """
    Per-container operations against the local Docker engine.
    No in-process state besides the lazily created client.
    """

    def __init__(self, client: Optional[docker.DockerClient] = None):
        self._client = client
        self._lock = threading.Lock()

    @property
    def client(self) -> docker.DockerClient:
        """Lazy docker client (double-checked under a lock)."""
        if self._client is None:
            with self._lock:
                if self._client is None:
                    try:
                        self._client = docker.from_env()
                    except DockerException as e:
                        raise RuntimeCallError("connect", "docker", e) from e
                    logger.debug("[Runtime] Docker client initialized")
        return self._client

    @contextmanager
    def _call(self, operation: str, target: str, absent_ok: bool = False):
        try:
            yield
        except NotFound as e:
            if absent_ok:
                raise AlreadyAbsent(target, operation) from e
            raise RuntimeCallError(operation, target, e) from e
        except DockerException as e:
            raise RuntimeCallError(operation, target, e) from e

    def _get(self, name: str, operation: str, absent_ok: bool = False):
        with self._call(operation, name, absent_ok=absent_ok):
            return self.client.containers.get(name)

    # ── State Queries ─────────────────────────────────────

    def local_image_id(self, image_ref: str) -> str:
        """Id the reference resolves to locally, '' when not present."""
        if not image_ref:
            return ""
        try:
            return self.client.images.get(image_ref).id
        except ImageNotFound:
            return ""
        except DockerException as e:
            raise RuntimeCallError("inspect image", image_ref, e) from e

    def query(self, spec: ContainerSpec) -> ObservedState:
        """Fresh point-in-time state for one declared container."""
        local_id = self.local_image_id(spec.image)
        try:
            container = self.client.containers.get(spec.name)
        except NotFound:
            return ObservedState(local_image_id=local_id)
        except DockerException as e:
            raise RuntimeCallError("inspect", spec.name, e) from e

        return ObservedState(
            exists=True,
            running=container.status == "running",
            image_id=container.attrs.get("Image", ""),
            run_signature=(container.labels or {}).get(LABEL_RUN_SIGNATURE, ""),
            local_image_id=local_id,
        )

    def exists(self, name: str) -> bool:
        try:
            self.client.containers.get(name)
            return True
        except NotFound:
            return False
        except DockerException as e:
            raise RuntimeCallError("inspect", name, e) from e

    def is_running(self, name: str) -> bool:
        try:
            return self.client.containers.get(name).status == "running"
        except NotFound:
            return False
        except DockerException as e:
            raise RuntimeCallError("inspect", name, e) from e

    # ── Container Lifecycle ───────────────────────────────

    def create(self, spec: ContainerSpec):
        kwargs = create_kwargs(spec)
        with self._call("create", spec.name):
            container = self.client.containers.create(spec.image, **kwargs)
        logger.debug(f"[Runtime] Created {spec.name} ({container.short_id})")

    def start(self, name: str):
        container = self._get(name, "start")
        with self._call("start", name):
            container.start()

    def stop(self, name: str, args: Optional[Dict[str, Any]] = None):
        args = args or {}
        container = self._get(name, "stop", absent_ok=True)
        with self._call("stop", name, absent_ok=True):
            container.stop(timeout=args.get("timeout", CONTAINER_STOP_TIMEOUT))

    def kill(self, name: str, args: Optional[Dict[str, Any]] = None):
        args = args or {}
        container = self._get(name, "kill", absent_ok=True)
        with self._call("kill", name, absent_ok=True):
            container.kill(signal=args.get("signal", DEFAULT_KILL_SIGNAL))

    def remove(self, name: str, args: Optional[Dict[str, Any]] = None):
        args = args or {}
        container = self._get(name, "remove", absent_ok=True)
        with self._call("remove", name, absent_ok=True):
            container.remove(force=args.get("force", False), v=args.get("v", False))

    def restart(self, name: str, args: Optional[Dict[str, Any]] = None):
        args = args or {}
        container = self._get(name, "restart")
        with self._call("restart", name):
            container.restart(timeout=args.get("timeout", CONTAINER_STOP_TIMEOUT))

    # ── Image Management ──────────────────────────────────

    def build(self, spec: ContainerSpec):
        """Build spec.image from its build context."""
        if not spec.build:
            raise RuntimeCallError("build", spec.image or spec.name, ValueError("no build path"))
        logger.info(f"[Runtime] Building image: {spec.image} from {spec.build}")
        try:
            _, build_logs = self.client.images.build(
                path=spec.build,
                tag=spec.image,
                rm=True,
                forcerm=True,
                labels={LABEL_MANAGED: "true", LABEL_PROJECT: spec.project_name},
            )
            for chunk in build_logs:
                if "stream" in chunk:
                    logger.debug(f"[Build] {chunk['stream'].strip()}")
        except (BuildError, DockerException) as e:
            raise RuntimeCallError("build", spec.image, e) from e

    def pull(self, image_ref: str):
        repository, tag = parse_repository_tag(image_ref)
        logger.info(f"[Runtime] Pulling image: {image_ref}")
        with self._call("pull", image_ref):
            self.client.images.pull(repository, tag=tag or "latest")

    # ── Streams ───────────────────────────────────────────

    def attach_stream(self, name: str, out: Optional[IO[str]] = None) -> StreamHandle:
        container = self._get(name, "attach")
        with self._call("attach", name):
            stream = container.attach(stdout=True, stderr=True, stream=True, logs=True)
        return StreamHandle(name, stream, out).start()

    def logs_stream(self, name: str, out: Optional[IO[str]] = None) -> StreamHandle:
        container = self._get(name, "logs")
        with self._call("logs", name):
            stream = container.logs(stream=True, follow=True)
        return StreamHandle(name, stream, out).start()

    # ── Reporting ─────────────────────────────────────────

    def ip(self, name: str) -> str:
        container = self._get(name, "inspect")
        networks = container.attrs.get("NetworkSettings", {}).get("Networks", {}) or {}
        return next(
            (v.get("IPAddress") for v in networks.values() if v.get("IPAddress")),
            "",
        )

    def ps(self, names: List[str], args: Optional[Dict[str, Any]] = None) -> List[Dict[str, str]]:
        """One row per existing container among `names`, in the given order."""
        args = args or {}
        wanted = set(names)
        with self._call("ps", ",".join(names)):
            found = {
                c.name: c for c in self.client.containers.list(all=args.get("all", False))
                if c.name in wanted
            }
        rows = []
        for name in names:
            c = found.get(name)
            if c is None:
                continue
            tags = c.image.tags if c.image is not None else []
            rows.append({
                "name": c.name,
                "id": c.short_id,
                "image": tags[0] if tags else c.attrs.get("Image", "")[:19],
                "status": c.status,
            })
        return rows

    def stats(self, names: List[str]) -> List[Dict[str, Any]]:
        """Single stats sample per running container."""
        result = []
        for name in names:
            try:
                container = self.client.containers.get(name)
                if container.status != "running":
                    continue
                stats = container.stats(stream=False)
            except NotFound:
                continue
            except DockerException as e:
                raise RuntimeCallError("stats", name, e) from e
            result.append(_parse_stats(name, stats))
        return result

    def list_project_containers(self, project: str) -> List[Dict[str, Any]]:
        """Containers carrying this project's label, whatever their state."""
        with self._call("list", project):
            containers = self.client.containers.list(
                all=True, filters={"label": f"{LABEL_PROJECT}={project}"}
            )
        result = []
        for c in containers:
            labels = c.labels or {}
            try:
                instance = int(labels.get(LABEL_INSTANCE, "0") or "0")
            except ValueError:
                instance = 0
            result.append({
                "name": c.name,
                "service_type": labels.get(LABEL_SERVICE_TYPE, ""),
                "instance_number": instance,
            })
        return result


# ── Helpers ───────────────────────────────────────────────

def _parse_stats(name: str, stats: Dict[str, Any]) -> Dict[str, Any]:
    cpu_stats = stats.get("cpu_stats", {})
    precpu = stats.get("precpu_stats", {})
    cpu_delta = cpu_stats.get("cpu_usage", {}).get("total_usage", 0) - \
        precpu.get("cpu_usage", {}).get("total_usage", 0)
    system_delta = cpu_stats.get("system_cpu_usage", 0) - precpu.get("system_cpu_usage", 0)
    num_cpus = cpu_stats.get("online_cpus", 1) or 1
    cpu_percent = (cpu_delta / system_delta) * num_cpus * 100.0 if system_delta > 0 else 0.0

    mem_usage = stats.get("memory_stats", {}).get("usage", 0)
    mem_limit = stats.get("memory_stats", {}).get("limit", 0)

    networks = stats.get("networks", {}) or {}
    net_rx = sum(v.get("rx_bytes", 0) for v in networks.values())
    net_tx = sum(v.get("tx_bytes", 0) for v in networks.values())

    return {
        "name": name,
        "cpu_percent": round(cpu_percent, 1),
        "memory_mb": round(mem_usage / (1024 * 1024), 1),
        "memory_limit_mb": round(mem_limit / (1024 * 1024), 1),
        "network_rx_bytes": net_rx,
        "network_tx_bytes": net_tx,
    }
