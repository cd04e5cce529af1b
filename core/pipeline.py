"""Build-and-run pipeline: checkout, build, run, then publish the route.

Steps run one after another with no rollback. A failing step stops the
sequence and leaves the registry untouched, but anything an earlier step did
(pulled commits, a built image) stays in place.

Builds share one git working directory, so the whole sequence runs under a
single process-wide lock.
"""
import threading
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

from docker.errors import BuildError, DockerException
from git.exc import GitCommandError, GitError
from loguru import logger

from .config import Settings
from .engine import ContainerEngine
from .git_manager import GitManager
from .metrics import DEPLOYMENT_COUNTER
from .network import PortManager
from .registry import DeploymentRegistry
from .schemas import DeployRequest, DeploymentRecord

Step = Tuple[str, Callable[[], Any]]


class InvalidDeploymentError(ValueError):
    """The request cannot be built from this repository (bad subdirectory or Dockerfile path)."""


class BuildStepError(Exception):
    """A pipeline step failed. Carries enough context to diagnose it remotely."""

    def __init__(self, command: str, commands: List[str], output: str = "", error: str = ""):
        super().__init__(f"{command}: {error}")
        self.command = command
        self.commands = commands
        self.output = output
        self.error = error

    def report(self) -> str:
        lines = [f"Error running command: {self.command}", f"error: {self.error}"]
        if self.commands:
            lines.append("commands:")
            lines.extend(f"  {c}" for c in self.commands)
        lines.append("output:")
        lines.append(self.output)
        return "\n".join(lines)


def _captured_output(exc: Exception) -> str:
    if isinstance(exc, GitCommandError):
        parts = [p.strip() for p in (exc.stdout, exc.stderr) if p and p.strip()]
        return "\n".join(parts)
    if isinstance(exc, BuildError):
        lines = []
        for chunk in exc.build_log or []:
            if not isinstance(chunk, dict):
                continue
            text = chunk.get("stream") or chunk.get("error") or chunk.get("status")
            if text:
                lines.append(text.rstrip())
        return "\n".join(lines)
    explanation = getattr(exc, "explanation", None)
    return str(explanation) if explanation else ""


class DeploymentPipeline:
    def __init__(
        self,
        settings: Settings,
        registry: DeploymentRegistry,
        git_manager: Optional[GitManager] = None,
        engine: Optional[ContainerEngine] = None,
        port_manager: Optional[PortManager] = None,
    ):
        self.settings = settings
        self.registry = registry
        self.git_manager = git_manager if git_manager is not None else GitManager(str(settings.git_dir))
        self.engine = engine if engine is not None else ContainerEngine()
        self.port_manager = (
            port_manager if port_manager is not None else PortManager(base_port=settings.base_port)
        )
        self._build_lock = threading.Lock()

    @property
    def repo_root(self) -> Path:
        return Path(self.settings.git_dir).resolve()

    def resolve_context(self, subdirectory: str) -> Path:
        root = self.repo_root
        relative = subdirectory.strip().lstrip("/") or "."
        context = (root / relative).resolve()
        if context != root and root not in context.parents:
            raise InvalidDeploymentError(f"Subdirectory {subdirectory} is outside the repository")
        return context

    def _check_dockerfile(self, context: Path, dockerfile: str):
        path = (context / dockerfile).resolve()
        if self.repo_root not in path.parents:
            raise InvalidDeploymentError(f"Dockerfile {dockerfile} is outside the repository")

    def image_tag(self, index: int) -> str:
        return f"{self.settings.image_prefix}{index}"

    def _steps(self, request: DeployRequest, index: int, context: Path) -> List[Step]:
        tag = self.image_tag(index)
        host_port = self.port_manager.host_port(index)
        steps: List[Step] = []
        if request.pull_origin:
            steps.append(("git pull", self.git_manager.pull))
        steps.append(
            (
                f"git checkout {request.branch_name}",
                lambda: self._checkout(request.branch_name),
            )
        )
        steps.append(
            (
                f"docker build -t {tag} -f {request.dockerfile} {context}",
                lambda: self._build(context, tag, request.dockerfile),
            )
        )
        steps.append(
            (
                f"docker run -d -p {host_port}:{request.http_port} {tag}",
                lambda: self.engine.deploy(
                    request.deployment_name, tag, host_port, request.http_port
                ),
            )
        )
        return steps

    def _checkout(self, branch: str) -> str:
        """Check out ``branch`` and return the short hash of its head commit."""
        self.git_manager.checkout(branch)
        return self.git_manager.get_commit_hash(short=True)

    def _build(self, context: Path, tag: str, dockerfile: str) -> str:
        # the subdirectory may only exist on the branch just checked out
        if not context.is_dir():
            raise InvalidDeploymentError(f"Subdirectory {context} does not exist")
        return self.engine.build_image(str(context), tag, dockerfile=dockerfile)

    def plan(self, request: DeployRequest, index: int) -> List[str]:
        """The commands a deployment of ``request`` at ``index`` would run."""
        context = self.resolve_context(request.subdirectory)
        return [command for command, _ in self._steps(request, index, context)]

    def _reserve_index(self) -> int:
        index = self.registry.next_index
        if not self.settings.skip_busy_ports:
            return index
        try:
            free = self.port_manager.find_free_index(index)
        except RuntimeError as e:
            raise BuildStepError("allocate host port", [], error=str(e)) from e
        if free != index:
            logger.warning(
                f"Host ports {self.port_manager.host_port(index)}-"
                f"{self.port_manager.host_port(free - 1)} are busy, using index {free}"
            )
        return free

    def deploy(self, request: DeployRequest) -> DeploymentRecord:
        """Run the full pipeline for ``request`` and publish its route.

        Raises ``InvalidDeploymentError`` for requests that cannot be built
        from this repository and ``BuildStepError`` when a step fails.
        """
        try:
            context = self.resolve_context(request.subdirectory)
            self._check_dockerfile(context, request.dockerfile)
        except InvalidDeploymentError:
            DEPLOYMENT_COUNTER.labels(result="rejected").inc()
            raise

        with self._build_lock:
            index = self._reserve_index()
            steps = self._steps(request, index, context)
            commands = [command for command, _ in steps]
            logger.info(
                f"Deploying {request.deployment_name} (index {index}):\n" + "\n".join(commands)
            )

            results = []
            for command, action in steps:
                try:
                    results.append(action())
                except InvalidDeploymentError:
                    # earlier steps already ran, so this is a failed deploy
                    DEPLOYMENT_COUNTER.labels(result="failed").inc()
                    raise
                except (GitError, DockerException, OSError) as e:
                    output = _captured_output(e)
                    logger.error(f"Deployment {request.deployment_name} failed at '{command}': {e}")
                    if output:
                        logger.error(output)
                    DEPLOYMENT_COUNTER.labels(result="failed").inc()
                    raise BuildStepError(command, commands, output=output, error=str(e)) from e

            record = DeploymentRecord(
                name=request.deployment_name,
                index=index,
                host_port=self.port_manager.host_port(index),
                image_tag=self.image_tag(index),
                container_id=getattr(results[-1], "id", None),
                branch_name=request.branch_name,
                commit=results[-3],
            )
            previous = self.registry.register(record)

        DEPLOYMENT_COUNTER.labels(result="success").inc()
        logger.success(
            f"Deployed {record.name} from {record.branch_name}@{record.commit} on port {record.host_port}"
        )
        if previous is not None:
            self._handle_replaced(previous, record)
        return record

    def _handle_replaced(self, previous: DeploymentRecord, record: DeploymentRecord):
        if not previous.container_id or previous.container_id == record.container_id:
            return
        if not self.settings.stop_replaced:
            logger.warning(
                f"Redeployed {record.name}: container {previous.container_id[:12]} "
                f"on port {previous.host_port} is still running"
            )
            return
        try:
            self.engine.stop_container(previous.container_id)
            logger.info(f"Stopped replaced container {previous.container_id[:12]} for {record.name}")
        except DockerException as e:
            logger.warning(f"Could not stop replaced container {previous.container_id[:12]}: {e}")
