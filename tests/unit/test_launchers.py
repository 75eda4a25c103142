"""Unit tests for LocalLauncher and PodmanLauncher."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from podman.errors import APIError, NotFound

from pipeline_scm.launcher.interface import InMemoryLogSink, LauncherError, VolumeMount
from pipeline_scm.launcher.local import LocalLauncher
from pipeline_scm.launcher.podman import PodmanLauncher


class TestLocalLauncher:
    """Test host process execution."""

    def test_output_and_exit_code(self):
        """Test stdout/stderr reach the sink and the exit code is returned."""
        sink = InMemoryLogSink()
        code = LocalLauncher().launch(
            [sys.executable, "-c",
             "import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)"],
            sink,
        )

        assert code == 3
        assert sink.text() == "out"
        assert b"err" in sink.stderr

    def test_environment_and_cwd(self, tmp_path):
        """Test extra environment and working directory are applied."""
        sink = InMemoryLogSink()
        code = LocalLauncher(base_environment={**os.environ, "BASE": "1"}).launch(
            [sys.executable, "-c",
             "import os; print(os.environ['BASE'], os.environ['EXTRA'], os.getcwd())"],
            sink,
            environment={"EXTRA": "2"},
            cwd=tmp_path,
        )

        assert code == 0
        base, extra, cwd = sink.text().split(" ", 2)
        assert (base, extra) == ("1", "2")
        assert Path(cwd).resolve() == tmp_path.resolve()

    def test_missing_executable(self):
        """Test that an unlaunchable command raises LauncherError."""
        with pytest.raises(LauncherError, match="failed to launch"):
            LocalLauncher().launch(["/nonexistent/bin/git", "status"], InMemoryLogSink())


class TestPodmanLauncher:
    """Test podman exec pattern with a mocked client."""

    def make_launcher(self, container, **kwargs):
        launcher = PodmanLauncher(image="test/image:latest", **kwargs)
        client = MagicMock()
        client.containers.create.return_value = MagicMock(id="ctr-1")
        client.containers.get.return_value = container
        launcher._client = client
        return launcher, client

    def running_container(self):
        container = MagicMock()
        container.status = "running"
        return container

    def test_launch_creates_container_once(self, tmp_path):
        """Test that the container is created on first launch and reused."""
        container = self.running_container()
        container.exec_run.return_value = (0, (b"stdout output", b"stderr output"))
        launcher, client = self.make_launcher(
            container, mounts=[VolumeMount(source=tmp_path, target=tmp_path, selinux_label="Z")]
        )
        sink = InMemoryLogSink()

        assert launcher.launch(["git", "status"], sink, cwd=tmp_path) == 0
        assert launcher.launch(["git", "log"], sink) == 0

        client.containers.create.assert_called_once()
        create_kwargs = client.containers.create.call_args.kwargs
        assert create_kwargs["command"] == ["/bin/sleep", "infinity"]
        assert create_kwargs["mounts"] == [{
            "type": "bind",
            "source": str(tmp_path),
            "target": str(tmp_path),
            "read_only": False,
            "relabel": "Z",
        }]
        container.start.assert_called_once()
        first_exec = container.exec_run.call_args_list[0].kwargs
        assert first_exec["cmd"] == ["git", "status"]
        assert first_exec["workdir"] == str(tmp_path)
        assert first_exec["demux"] is True
        assert sink.stdout == b"stdout outputstdout output"
        assert sink.stderr == b"stderr outputstderr output"

    def test_launch_exit_code(self):
        """Test non-zero exit codes are returned."""
        container = self.running_container()
        container.exec_run.return_value = (128, (None, b"fatal: not a git repository"))
        launcher, _ = self.make_launcher(container)
        sink = InMemoryLogSink()

        assert launcher.launch(["git", "status"], sink) == 128
        assert sink.stdout == b""
        assert b"fatal" in sink.stderr

    def test_launch_api_error(self):
        """Test podman API errors become LauncherError."""
        container = self.running_container()
        container.exec_run.side_effect = APIError("exec failed")
        launcher, _ = self.make_launcher(container)

        with pytest.raises(LauncherError, match="failed to execute command"):
            launcher.launch(["git", "status"], InMemoryLogSink())

    def test_container_exits_during_start(self):
        """Test that a container that dies on start is reported."""
        container = MagicMock()
        container.status = "exited"
        launcher, _ = self.make_launcher(container)

        with pytest.raises(LauncherError, match="exited during start"):
            launcher.launch(["git", "status"], InMemoryLogSink())

    def test_close_removes_container(self):
        """Test that close stops and removes the container."""
        container = self.running_container()
        container.exec_run.return_value = (0, (None, None))
        launcher, _ = self.make_launcher(container)

        with launcher:
            launcher.launch(["true"], InMemoryLogSink())

        container.stop.assert_called_once()
        container.remove.assert_called_once_with(force=True)
        # Second close is a no-op
        launcher.close()
        container.remove.assert_called_once()

    def test_close_ignores_missing_container(self):
        """Test that a container removed elsewhere is not an error."""
        container = self.running_container()
        container.exec_run.return_value = (0, (None, None))
        launcher, client = self.make_launcher(container)
        launcher.launch(["true"], InMemoryLogSink())
        client.containers.get.side_effect = NotFound("gone")

        launcher.close()

    def test_close_without_launch(self):
        """Test that closing an unused launcher does nothing."""
        with patch("pipeline_scm.launcher.podman.PodmanClient") as client_cls:
            PodmanLauncher(image="test/image:latest").close()
        client_cls.assert_not_called()


class TestPodmanLauncherImage:
    """Test image availability and pull policy."""

    def make_launcher(self, has_image, **kwargs):
        launcher = PodmanLauncher(image="test/image:latest", **kwargs)
        client = MagicMock()
        if not has_image:
            client.images.get.side_effect = NotFound("no such image")
        container = MagicMock()
        container.status = "running"
        container.exec_run.return_value = (0, (None, None))
        client.containers.create.return_value = MagicMock(id="ctr-1")
        client.containers.get.return_value = container
        launcher._client = client
        return launcher, client

    def test_missing_image_is_pulled_before_create(self):
        """Test that an absent image is pulled before the container is created."""
        launcher, client = self.make_launcher(has_image=False, pull_policy="if-not-present")

        launcher.launch(["true"], InMemoryLogSink())

        client.images.pull.assert_called_once_with("test/image:latest")
        client.containers.create.assert_called_once()

    def test_present_image_not_pulled(self):
        """Test that a local image is used as is."""
        launcher, client = self.make_launcher(has_image=True, pull_policy="if-not-present")

        launcher.launch(["true"], InMemoryLogSink())

        client.images.pull.assert_not_called()

    def test_always_policy_pulls(self):
        """Test that the always policy pulls even when the image is local."""
        launcher, client = self.make_launcher(has_image=True, pull_policy="always")

        launcher.ensure_image_available()

        client.images.pull.assert_called_once_with("test/image:latest")

    def test_never_policy_without_image(self):
        """Test that the never policy refuses to run without a local image."""
        launcher, client = self.make_launcher(has_image=False, pull_policy="never")

        with pytest.raises(LauncherError, match="pull policy is 'never'"):
            launcher.launch(["true"], InMemoryLogSink())

        client.images.pull.assert_not_called()
        client.containers.create.assert_not_called()

    def test_pull_timeout(self, monkeypatch):
        """Test that repeated pull failures end in LauncherError."""
        monkeypatch.setenv("PIPELINE_SCM_CONTAINER_TIMEOUTS", "pull=0")
        launcher, client = self.make_launcher(has_image=False, pull_policy="if-not-present")
        client.images.pull.side_effect = APIError("registry unreachable")

        with pytest.raises(LauncherError, match="timeout pulling image"):
            launcher.ensure_image_available()

        client.containers.create.assert_not_called()

    def test_pull_policy_from_config(self, monkeypatch):
        """Test that the pull policy defaults to the configured value."""
        monkeypatch.setenv("PIPELINE_SCM_IMAGE_PULL_POLICY", "Never")
        launcher, client = self.make_launcher(has_image=False)

        with pytest.raises(LauncherError, match="pull policy"):
            launcher.ensure_image_available()


class TestPodmanLauncherFailedStart:
    """Test recovery from a container that never reached running."""

    def test_failed_start_is_not_reused(self):
        """Test that a container dying on start is removed and recreated next time."""
        launcher = PodmanLauncher(image="test/image:latest")
        client = MagicMock()
        dead = MagicMock(status="exited")
        healthy = MagicMock(status="running")
        healthy.exec_run.return_value = (0, (b"ok\n", None))
        client.containers.create.side_effect = [MagicMock(id="ctr-dead"), MagicMock(id="ctr-ok")]
        client.containers.get.side_effect = lambda cid: dead if cid == "ctr-dead" else healthy
        launcher._client = client

        with pytest.raises(LauncherError, match="exited during start"):
            launcher.launch(["git", "status"], InMemoryLogSink())
        dead.remove.assert_called_once_with(force=True)

        sink = InMemoryLogSink()
        assert launcher.launch(["git", "status"], sink) == 0
        assert sink.text() == "ok"
        assert client.containers.create.call_count == 2
        dead.exec_run.assert_not_called()

    def test_start_api_error_removes_container(self):
        """Test that a podman error during start is wrapped and cleaned up."""
        launcher = PodmanLauncher(image="test/image:latest")
        client = MagicMock()
        container = MagicMock(status="created")
        container.start.side_effect = APIError("cannot start")
        client.containers.create.return_value = MagicMock(id="ctr-1")
        client.containers.get.return_value = container
        launcher._client = client

        with pytest.raises(LauncherError, match="failed to start launcher container"):
            launcher.launch(["true"], InMemoryLogSink())

        container.remove.assert_called_once_with(force=True)
        launcher.close()
        container.stop.assert_not_called()
