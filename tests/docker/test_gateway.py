"""Tests for engine_spine.docker.gateway (all docker calls mocked)."""

from __future__ import annotations

import io
import json
import subprocess
import threading
from unittest.mock import MagicMock, patch

import pytest

from engine_spine.components.specs import StartConfig, with_env, with_port, with_volume
from engine_spine.config import EngineConfig
from engine_spine.core.errors import (
    BindConflictError,
    ContainerNotFoundError,
    DaemonError,
    DockerCommandError,
    DockerNotFoundError,
    StartFailedError,
)
from engine_spine.docker.gateway import ContainerGateway, ContainerState, Port, parse_ports


def ps_row(name: str, state: str = "running", image: str = "srcd/gitbase:v0.19.0", ports: str = "") -> str:
    return json.dumps(
        {
            "ID": f"id-{name}",
            "Names": name,
            "Image": image,
            "State": state,
            "Status": "Up 2 minutes" if state == "running" else "Exited (0) 1 minute ago",
            "Ports": ports,
        }
    )


def completed(stdout: str = "", returncode: int = 0, stderr: str = "") -> MagicMock:
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def gateway() -> ContainerGateway:
    return ContainerGateway(EngineConfig(), docker_cmd="docker")


class TestParsing:
    """Tests for docker ps output parsing."""

    def test_parse_ports(self):
        ports = parse_ports("0.0.0.0:8080->80/tcp, :::8080->80/tcp, 9432/tcp")
        assert ports == [
            Port("0.0.0.0", 80, 8080, "tcp"),
            Port("::", 80, 8080, "tcp"),
            Port("", 9432, 0, "tcp"),
        ]

    def test_parse_ports_empty(self):
        assert parse_ports("") == []

    def test_from_ps(self):
        state = ContainerState.from_ps(json.loads(ps_row("srcd-cli-gitbase", ports="0.0.0.0:3306->3306/tcp")))
        assert state.id == "id-srcd-cli-gitbase"
        assert state.names == ["srcd-cli-gitbase"]
        assert state.running
        assert state.public_ports() == [3306]

    def test_from_ps_without_state_column(self):
        row = json.loads(ps_row("x"))
        del row["State"]
        assert ContainerState.from_ps(row).running


class TestQueries:
    """info, is_running, list."""

    @patch("subprocess.run")
    def test_info_exact_name_match(self, mock_run, gateway):
        # the name filter is a substring match in docker
        mock_run.return_value = completed(
            "\n".join([ps_row("srcd-cli-gitbase-web"), ps_row("srcd-cli-gitbase")])
        )
        state = gateway.info("srcd-cli-gitbase")
        assert state.id == "id-srcd-cli-gitbase"

        args = mock_run.call_args[0][0]
        assert args[:3] == ["docker", "ps", "--all"]
        assert "name=srcd-cli-gitbase" in args
        assert mock_run.call_args.kwargs["timeout"] == EngineConfig().query_timeout

    @patch("subprocess.run")
    def test_info_not_found(self, mock_run, gateway):
        mock_run.return_value = completed(ps_row("srcd-cli-gitbase-web"))
        with pytest.raises(ContainerNotFoundError):
            gateway.info("srcd-cli-gitbase")

    @patch("subprocess.run")
    def test_is_running(self, mock_run, gateway):
        mock_run.return_value = completed(ps_row("srcd-cli-gitbase", image="srcd/gitbase"))
        assert gateway.is_running("srcd-cli-gitbase")
        assert gateway.is_running("srcd-cli-gitbase", "srcd/gitbase:latest")
        assert not gateway.is_running("srcd-cli-gitbase", "srcd/gitbase:v0.19.0")

    @patch("subprocess.run")
    def test_is_running_absent_or_stopped(self, mock_run, gateway):
        mock_run.return_value = completed("")
        assert gateway.is_running("srcd-cli-gitbase") is False
        mock_run.return_value = completed(ps_row("srcd-cli-gitbase", state="exited"))
        assert gateway.is_running("srcd-cli-gitbase") is False

    @patch("subprocess.run")
    def test_list(self, mock_run, gateway):
        mock_run.return_value = completed("\n".join([ps_row("a"), "", ps_row("b", state="exited")]))
        assert [s.name for s in gateway.list()] == ["a", "b"]


class TestInfoOrStart:
    """info_or_start policy."""

    def test_running_container_is_returned_without_start(self, gateway):
        running = ContainerState(id="1", names=["x"], image="img", state="running")
        start_fn = MagicMock()
        with patch.object(gateway, "info", return_value=running):
            assert gateway.info_or_start("x", start_fn) is running
        start_fn.assert_not_called()

    def test_absent_container_is_started_then_requeried(self, gateway):
        started = ContainerState(id="1", names=["x"], image="img", state="running")
        start_fn = MagicMock()
        with patch.object(gateway, "info", side_effect=[ContainerNotFoundError("x"), started]):
            assert gateway.info_or_start("x", start_fn) is started
        start_fn.assert_called_once_with()

    def test_start_failure_is_wrapped(self, gateway):
        start_fn = MagicMock(side_effect=RuntimeError("boom"))
        with patch.object(gateway, "info", side_effect=ContainerNotFoundError("x")):
            with pytest.raises(StartFailedError, match="could not create x: boom"):
                gateway.info_or_start("x", start_fn)

    def test_missing_after_start_is_wrapped(self, gateway):
        with patch.object(gateway, "info", side_effect=ContainerNotFoundError("x")):
            with pytest.raises(StartFailedError, match="could not create x: container not found"):
                gateway.info_or_start("x", lambda: None)


class TestCommands:
    """start, kill and image/volume/network commands."""

    @patch("subprocess.run")
    def test_start_creates_starts_and_connects(self, mock_run, gateway):
        mock_run.side_effect = [
            completed("abc123\n"),  # create
            completed("abc123\n"),  # start
            completed(returncode=1, stderr="no such network"),  # network inspect
            completed("netid\n"),  # network create
            completed(""),  # network connect
        ]
        cfg = StartConfig(image="srcd/gitbase:v0.19.0", cpus=3.6, privileged=True).apply(
            with_env("A", "1"),
            with_port(3306, 3306),
            with_volume("vol", "/data"),
        )

        gateway.start("srcd-cli-gitbase", cfg)

        calls = [c[0][0][1:] for c in mock_run.call_args_list]
        assert calls[0] == [
            "create", "--name", "srcd-cli-gitbase",
            "--env", "A=1",
            "--publish", "3306:3306",
            "--mount", "type=volume,source=vol,target=/data",
            "--privileged",
            "--cpus", "3.6",
            "srcd/gitbase:v0.19.0",
        ]  # fmt: skip
        assert calls[1] == ["start", "abc123"]
        assert calls[3] == ["network", "create", "srcd-cli-network"]
        assert calls[4] == ["network", "connect", "srcd-cli-network", "abc123"]

    @patch("subprocess.run")
    def test_start_removes_stale_container_and_retries(self, mock_run, gateway):
        conflict = 'Error response from daemon: Conflict. The container name "/x" is already in use'
        mock_run.side_effect = [
            completed(returncode=125, stderr=conflict),  # create
            completed(ps_row("x", state="exited")),  # ps
            completed(""),  # rm
            completed("newid\n"),  # create again
            completed("newid\n"),  # start
            completed("[]"),  # network inspect
            completed(""),  # network connect
        ]

        gateway.start("x", StartConfig(image="img"))

        calls = [c[0][0][1:] for c in mock_run.call_args_list]
        assert calls[2] == ["rm", "--force", "id-x"]
        assert calls[4] == ["start", "newid"]

    @patch("subprocess.run")
    def test_create_failure_without_stale_container_keeps_daemon_error(self, mock_run, gateway):
        mock_run.side_effect = [
            completed(returncode=125, stderr="Error response from daemon: No such image: img:latest"),  # create
            completed(""),  # ps
        ]

        with pytest.raises(DaemonError, match="No such image") as exc_info:
            gateway.start("x", StartConfig(image="img:latest"))

        assert not isinstance(exc_info.value, ContainerNotFoundError)
        assert mock_run.call_count == 2

    def test_create_failure_reaches_info_or_start(self, gateway):
        daemon_err = DaemonError("", DockerCommandError("Error response from daemon: No such image: img:latest"))
        with patch.object(gateway, "info", side_effect=ContainerNotFoundError("x")):
            with patch.object(gateway, "_force_create", side_effect=daemon_err):
                with pytest.raises(StartFailedError) as exc_info:
                    gateway.info_or_start("x", lambda: gateway.start("x", StartConfig(image="img")))

        assert exc_info.value.cause is daemon_err
        assert "No such image" in str(exc_info.value)

    @patch("subprocess.run")
    def test_start_bind_conflict_is_classified(self, mock_run, gateway):
        stderr = (
            "Error response from daemon: driver failed programming external connectivity on endpoint "
            "srcd-cli-bblfshd (1a2b): Bind for 0.0.0.0:9432 failed: port is already allocated"
        )
        mock_run.side_effect = [completed("abc\n"), completed(returncode=125, stderr=stderr)]

        with pytest.raises(BindConflictError) as exc_info:
            gateway.start("srcd-cli-bblfshd", StartConfig(image="bblfsh/bblfshd"))

        assert exc_info.value.port == "9432"
        assert exc_info.value.service == "srcd-cli-bblfshd"
        assert isinstance(exc_info.value.cause, DockerCommandError)

    @patch("subprocess.run")
    def test_kill(self, mock_run, gateway):
        mock_run.side_effect = [completed(ps_row("x")), completed("")]
        gateway.kill("x")
        assert mock_run.call_args[0][0][1:] == ["rm", "--force", "id-x"]

    @patch("subprocess.run")
    def test_kill_absent(self, mock_run, gateway):
        mock_run.return_value = completed("")
        with pytest.raises(ContainerNotFoundError):
            gateway.kill("x")

    @patch("subprocess.run")
    def test_versions_installed(self, mock_run, gateway):
        mock_run.return_value = completed(
            "\n".join(
                json.dumps(row)
                for row in [
                    {"Repository": "srcd/gitbase", "Tag": "v0.19.0"},
                    {"Repository": "srcd/gitbase", "Tag": "v0.18.0"},
                    {"Repository": "<none>", "Tag": "<none>"},
                    {"Repository": "mysql", "Tag": "8.0.16"},
                ]
            )
        )
        assert gateway.versions_installed("srcd/gitbase") == ["v0.19.0", "v0.18.0"]
        assert gateway.is_installed("srcd/gitbase")
        assert gateway.is_installed("srcd/gitbase", "v0.18.0")
        assert not gateway.is_installed("srcd/gitbase", "v0.17.0")
        assert not gateway.is_installed("bblfsh/web")

    @patch("subprocess.run")
    def test_ensure_installed_pulls_missing(self, mock_run, gateway):
        mock_run.side_effect = [completed(""), completed("pulled")]
        assert gateway.ensure_installed("srcd/gitbase", "v0.19.0") is True
        assert mock_run.call_args[0][0][1:] == ["pull", "srcd/gitbase:v0.19.0"]
        assert mock_run.call_args.kwargs["timeout"] == EngineConfig().pull_timeout

    @patch("subprocess.run")
    def test_ensure_installed_skips_present(self, mock_run, gateway):
        mock_run.return_value = completed(json.dumps({"Repository": "srcd/gitbase", "Tag": "latest"}))
        assert gateway.ensure_installed("srcd/gitbase") is False
        assert mock_run.call_count == 1

    @patch("subprocess.run")
    def test_remove_network_absent(self, mock_run, gateway):
        mock_run.return_value = completed(returncode=1, stderr="Error: No such network")
        gateway.remove_network()
        assert mock_run.call_count == 1

    @patch("subprocess.run")
    def test_create_volume_idempotent(self, mock_run, gateway):
        mock_run.return_value = completed("[{}]")
        gateway.create_volume("vol")
        assert mock_run.call_count == 1


class TestLogs:
    """Following container output."""

    @pytest.fixture
    def daemon(self, gateway):
        state = ContainerState(id="id-daemon", names=["srcd-cli-daemon"], image="srcd/cli-daemon", state="running")
        with patch.object(gateway, "info", return_value=state):
            yield gateway

    @staticmethod
    def process(output: str) -> MagicMock:
        proc = MagicMock()
        proc.stdout = io.StringIO(output)
        proc.poll.return_value = None
        return proc

    def test_relays_lines_until_eof(self, daemon):
        stop = threading.Event()
        proc = self.process("starting\nlistening on :4242\n")
        with patch("subprocess.Popen", return_value=proc) as popen:
            lines = list(daemon.logs("srcd-cli-daemon", stop, since="2019-01-01T00:00:00Z"))
        stop.set()

        assert lines == ["starting", "listening on :4242"]
        assert popen.call_args[0][0] == [
            "docker", "logs", "--follow", "--since", "2019-01-01T00:00:00Z", "id-daemon",
        ]  # fmt: skip
        proc.terminate.assert_called()
        proc.wait.assert_called_once()

    def test_stops_when_event_is_set(self, daemon):
        stop = threading.Event()
        proc = self.process("one\ntwo\nthree\n")
        with patch("subprocess.Popen", return_value=proc):
            source = daemon.logs("srcd-cli-daemon", stop)
            assert next(source) == "one"
            stop.set()
            assert list(source) == []

        proc.terminate.assert_called()

    def test_absent_container(self, gateway):
        with patch.object(gateway, "info", side_effect=ContainerNotFoundError("x")):
            with patch("subprocess.Popen") as popen:
                with pytest.raises(ContainerNotFoundError):
                    list(gateway.logs("x", threading.Event()))
        popen.assert_not_called()


class TestFailures:
    """Error mapping of the docker CLI runner."""

    @patch("subprocess.run")
    def test_non_zero_exit(self, mock_run, gateway):
        mock_run.return_value = completed(returncode=1, stderr="permission denied")
        with pytest.raises(DockerCommandError) as exc_info:
            gateway.version()
        assert exc_info.value.returncode == 1
        assert exc_info.value.stderr == "permission denied"

    @patch("subprocess.run")
    def test_timeout(self, mock_run, gateway):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="docker", timeout=5)
        with pytest.raises(DockerCommandError, match="timed out"):
            gateway.list()

    @patch("subprocess.run")
    def test_binary_disappeared(self, mock_run, gateway):
        mock_run.side_effect = FileNotFoundError()
        with pytest.raises(DockerNotFoundError):
            gateway.list()

    @patch("shutil.which", return_value=None)
    def test_docker_not_on_path(self, _which):
        with pytest.raises(DockerNotFoundError):
            ContainerGateway(EngineConfig())
