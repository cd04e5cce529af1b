# core/engine.py
from typing import Any, Dict, List, Optional

from loguru import logger

MANAGED_BY = "doxy"


class ContainerEngine:
    def __init__(self, client: Optional[Any] = None):
        self._client = client

    def _ensure_client(self):
        if self._client is None:
            import docker

            self._client = docker.from_env()
        return self._client

    @property
    def client(self):
        return self._ensure_client()

    @client.setter
    def client(self, value):
        self._client = value

    def list_apps(self) -> List[Dict]:
        """Running containers started by this service."""
        containers = self.client.containers.list(
            all=False, filters={"label": f"managed_by={MANAGED_BY}"}
        )
        apps = []
        for c in containers:
            labels = getattr(c, "labels", None) or {}
            apps.append(
                {
                    "name": labels.get("app"),
                    "container": getattr(c, "name", None),
                    "status": getattr(c, "status", None),
                    "ports": getattr(c, "ports", None),
                }
            )
        return apps

    def build_image(self, path: str, tag: str, dockerfile: str = "Dockerfile") -> str:
        """Build ``path`` into an image tagged ``tag``.

        Raises ``docker.errors.BuildError`` (with the build log attached) or
        ``docker.errors.APIError``.
        """
        _, build_log = self.client.images.build(
            path=path, dockerfile=dockerfile, tag=tag, rm=True
        )
        for chunk in build_log or []:
            line = chunk.get("stream") if isinstance(chunk, dict) else None
            if line and line.strip():
                logger.debug(f"[{tag}] {line.rstrip()}")
        return tag

    def run_container(self, image: str, **kwargs):
        return self.client.containers.run(image, **kwargs)

    def deploy(self, app_name: str, image_tag: str, host_port: int, container_port: int):
        """Start ``image_tag`` detached, publishing ``container_port`` on ``host_port``."""
        return self.run_container(
            image_tag,
            detach=True,
            ports={f"{container_port}/tcp": host_port},
            labels={"app": app_name, "managed_by": MANAGED_BY},
        )

    def stop_container(self, container_id: str, timeout: int = 5):
        c = self.client.containers.get(container_id)
        c.stop(timeout=timeout)
