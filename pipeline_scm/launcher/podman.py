"""Podman-backed launcher using a long-lived container and podman exec."""

from __future__ import annotations

import logging
from pathlib import Path
from time import monotonic, sleep
from typing import Dict, Optional, Sequence

from podman import PodmanClient
from podman.errors import APIError, NotFound

from .. import config as scm_config
from .interface import LauncherError, LogSink, VolumeMount

logger = logging.getLogger(__name__)


class PodmanLauncher:
    """Podman-backed Launcher using the exec pattern.

    The first ``launch()`` creates a long-lived ``sleep infinity`` container
    with the configured mounts; every command is then a ``podman exec`` into
    it. Workspaces must be mounted at the same path they have on the host,
    since ``cwd`` is passed through unchanged.

    Example:

        mounts = [VolumeMount(source=ws, target=ws)]
        with PodmanLauncher(mounts=mounts) as launcher:
            step.checkout(build, ws, sink, launcher)
    """

    def __init__(
        self,
        image: Optional[str] = None,
        mounts: Sequence[VolumeMount] = (),
        *,
        labels: Optional[Dict[str, str]] = None,
        user: Optional[str] = None,
        pull_policy: Optional[str] = None,
    ) -> None:
        self.image = image or scm_config.scm_container_image()
        self.mounts = tuple(mounts)
        self._labels = dict(labels or {})
        self._user = user
        # values: always|if-not-present|never
        self._pull_policy = (pull_policy or scm_config.scm_image_pull_policy()).lower()
        # Lazy-init Podman client on first use to make tests lighter
        self._client = None  # type: ignore[var-annotated]
        self._container_id: Optional[str] = None
        t = scm_config.scm_container_timeouts()
        self._timeout_pull_s = int(t.get("pull", 300))
        self._timeout_start_s = int(t.get("start", 60))
        self._timeout_stop_grace_s = int(t.get("stop_grace", 20))

    # --- public interface ---

    def ensure_image_available(self) -> None:
        """Make sure the launcher image is present locally, honoring the pull policy."""
        self._ensure_client()
        try:
            has_local = self._has_image()
        except APIError as exc:
            raise LauncherError(f"failed to check image {self.image}", cause=exc)

        if self._pull_policy == "never":
            if not has_local:
                raise LauncherError(
                    f"image not present locally and pull policy is 'never': {self.image}"
                )
            return

        if self._pull_policy == "always" or not has_local:
            self._pull_image()

    def launch(
        self,
        command: Sequence[str],
        sink: LogSink,
        environment: Optional[Dict[str, str]] = None,
        cwd: Optional[Path] = None,
    ) -> int:
        """Execute command in the launcher container via podman exec."""
        self._ensure_client()
        container_id = self._ensure_container()
        try:
            container = self._client.containers.get(container_id)
        except NotFound as exc:
            raise LauncherError(f"container not found: {container_id}", cause=exc)
        except APIError as exc:
            raise LauncherError("failed to get container for exec", cause=exc)

        exec_kwargs = {
            "cmd": list(command),
            "environment": environment or {},
        }
        if cwd is not None:
            exec_kwargs["workdir"] = str(cwd)

        try:
            # Streamed execs report no exit code; returns (exit_code, (stdout, stderr))
            exit_code, output = container.exec_run(stream=False, demux=True, **exec_kwargs)
        except APIError as exc:
            raise LauncherError(f"failed to execute command in container: {list(command)}", cause=exc)

        if isinstance(output, tuple):
            stdout_data = output[0] if len(output) > 0 else None
            stderr_data = output[1] if len(output) > 1 else None
            if stdout_data:
                sink.write_stdout(stdout_data)
            if stderr_data:
                sink.write_stderr(stderr_data)
        elif isinstance(output, bytes) and output:
            # demux unsupported, treat as stdout
            sink.write_stdout(output)

        return int(exit_code) if exit_code is not None else 0

    def close(self) -> None:
        """Remove the launcher container, if one was started."""
        if self._container_id is None or self._client is None:
            return
        container_id, self._container_id = self._container_id, None
        try:
            self._remove_container(container_id)
        except NotFound:
            return
        except APIError as exc:
            raise LauncherError("failed to remove container", cause=exc)

    def __enter__(self) -> "PodmanLauncher":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # --- private helpers ---

    def _ensure_client(self) -> None:
        if self._client is None:
            self._client = PodmanClient(base_url=scm_config.scm_podman_socket())

    def _ensure_container(self) -> str:
        if self._container_id is not None:
            return self._container_id
        self.ensure_image_available()
        try:
            container_id = self._create_container()
        except APIError as exc:
            raise LauncherError(f"failed to create launcher container from {self.image}", cause=exc)
        try:
            self._start_container(container_id)
        except LauncherError:
            self._discard_container(container_id)
            raise
        except APIError as exc:
            self._discard_container(container_id)
            raise LauncherError(f"failed to start launcher container from {self.image}", cause=exc)
        self._container_id = container_id
        logger.info("Started launcher container %s (%s)", container_id, self.image)
        return container_id

    def _discard_container(self, container_id: str) -> None:
        try:
            self._client.containers.get(container_id).remove(force=True)
        except APIError as exc:
            logger.warning("Failed to remove container %s after failed start: %s", container_id, exc)

    def _has_image(self) -> bool:
        assert self._client is not None
        try:
            self._client.images.get(self.image)
            return True
        except NotFound:
            return False

    def _pull_image(self) -> None:
        assert self._client is not None
        logger.info("Pulling launcher image %s", self.image)
        deadline = monotonic() + self._timeout_pull_s
        while True:
            try:
                self._client.images.pull(self.image)
                return
            except APIError as exc:
                if monotonic() >= deadline:
                    raise LauncherError(f"timeout pulling image: {self.image}", cause=exc)
                logger.debug("Pull of %s failed, retrying: %s", self.image, exc)
            sleep(1.0)

    def _create_container(self) -> str:
        assert self._client is not None
        mounts = [self._mount_spec(vm) for vm in self.mounts]
        create_kwargs = {
            "image": self.image,
            "command": ["/bin/sleep", "infinity"],
            "labels": dict(self._labels),
            "mounts": mounts,
            "tty": False,
            "stdin_open": False,
        }
        if self._user is not None:
            create_kwargs["user"] = self._user

        container = self._client.containers.create(**create_kwargs)
        return container.id

    def _start_container(self, container_id: str) -> None:
        assert self._client is not None
        container = self._client.containers.get(container_id)
        container.start()
        deadline = monotonic() + self._timeout_start_s
        while True:
            container.reload()
            status = getattr(container, "status", None)
            if status == "running":
                return
            if status in ("exited", "dead"):
                raise LauncherError(f"launcher container {container_id} exited during start")
            if monotonic() >= deadline:
                raise LauncherError("timeout waiting for container to start")
            sleep(0.2)

    def _remove_container(self, container_id: str) -> None:
        assert self._client is not None
        container = self._client.containers.get(container_id)
        try:
            container.stop(timeout=self._timeout_stop_grace_s)
        except APIError as exc:
            logger.debug("Graceful stop of %s failed: %s", container_id, exc)
        container.remove(force=True)
        logger.debug("Removed launcher container %s", container_id)

    def _mount_spec(self, vm: VolumeMount) -> Dict[str, object]:
        spec: Dict[str, object] = {
            "type": "bind",
            "source": str(vm.source),
            "target": str(vm.target),
            "read_only": bool(vm.read_only),
        }
        if vm.selinux_label:
            spec["relabel"] = vm.selinux_label
        return spec
