"""
Tests for the daemon supervisor's pid-file handling. Process spawning is
exercised with a stand-in child instead of a real gateway server.
"""

import os
import subprocess
import sys
from unittest.mock import patch

import httpx
import pytest

from commgate.daemon import DaemonError, DaemonSupervisor


@pytest.fixture
def supervisor(tmp_path):
    return DaemonSupervisor(tmp_path / "gateway.pid", tmp_path / "logs" / "daemon.log")


def _dead_pid():
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid


class TestPidFile:
    def test_no_pid_file(self, supervisor):
        assert supervisor.running_pid() is None
        assert supervisor.stop() is None
        assert supervisor.status("http://127.0.0.1:1/gateway/health").running is False

    def test_stale_pid_file_removed(self, supervisor):
        supervisor.pid_file.write_text(f"{_dead_pid()}\n")
        assert supervisor.running_pid() is None
        assert not supervisor.pid_file.exists()

    def test_garbage_pid_file_removed(self, supervisor):
        supervisor.pid_file.write_text("not-a-pid")
        assert supervisor.running_pid() is None
        assert not supervisor.pid_file.exists()

    def test_live_pid_detected(self, supervisor):
        supervisor.pid_file.write_text(str(os.getpid()))
        assert supervisor.running_pid() == os.getpid()

    def test_register_and_release_current_process(self, supervisor):
        supervisor.register_current_process()
        assert supervisor.read_pid() == os.getpid()
        supervisor.release_current_process()
        assert not supervisor.pid_file.exists()

    def test_register_refuses_second_instance(self, supervisor):
        child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
        try:
            supervisor.pid_file.write_text(str(child.pid))
            with pytest.raises(DaemonError, match="already running"):
                supervisor.register_current_process()
        finally:
            child.kill()
            child.wait()

    def test_release_ignores_foreign_pid(self, supervisor):
        supervisor.pid_file.write_text("1")
        supervisor.release_current_process()
        assert supervisor.pid_file.exists()

    def test_register_records_bound_address(self, tmp_path):
        supervisor = DaemonSupervisor(tmp_path / "gateway.pid", tmp_path / "d.log", ("127.0.0.1", 9321))
        supervisor.register_current_process()
        assert supervisor.read_pid() == os.getpid()
        assert supervisor.recorded_address() == ("127.0.0.1", 9321)
        assert supervisor.base_url("127.0.0.1", 9800) == "http://127.0.0.1:9321"

    def test_base_url_falls_back_without_address(self, supervisor):
        supervisor.pid_file.write_text(f"{os.getpid()}\n")
        assert supervisor.recorded_address() is None
        assert supervisor.base_url("127.0.0.1", 9800) == "http://127.0.0.1:9800"


class TestStartStop:
    def test_start_stop_cycle(self, supervisor):
        sleeper = [sys.executable, "-c", "import time; time.sleep(60)"]
        with patch.object(DaemonSupervisor, "_server_command", return_value=sleeper):
            pid = supervisor.start("127.0.0.1", 9999)
            try:
                assert supervisor.running_pid() == pid
                assert supervisor.recorded_address() == ("127.0.0.1", 9999)
                with pytest.raises(DaemonError, match="already running"):
                    supervisor.start("127.0.0.1", 9999)
            finally:
                stopped = supervisor.stop(grace_s=5)
        assert stopped == pid
        assert supervisor.running_pid() is None
        assert supervisor.log_file.exists()

    def test_start_detects_immediate_exit(self, supervisor):
        crasher = [sys.executable, "-c", "import sys; print('bind failed'); sys.exit(2)"]
        with patch.object(DaemonSupervisor, "_server_command", return_value=crasher):
            with pytest.raises(DaemonError, match="exited during startup"):
                supervisor.start("127.0.0.1", 9999)
        assert not supervisor.pid_file.exists()
        assert "bind failed" in supervisor.log_file.read_text()

    def test_server_command_runs_foreground(self, supervisor):
        argv = supervisor._server_command("127.0.0.1", 9810)
        assert argv[:3] == [sys.executable, "-m", "commgate"]
        assert "--foreground" in argv
        assert argv[-2:] == ["--port", "9810"]


class TestStatus:
    def test_status_reads_health(self, supervisor):
        supervisor.pid_file.write_text(str(os.getpid()))
        response = httpx.Response(
            200,
            json={"success": True, "data": {"status": "ok", "uptime_secs": 42, "pending_count": 3}},
            request=httpx.Request("GET", "http://127.0.0.1:9810/gateway/health"),
        )
        with patch("commgate.daemon.httpx.get", return_value=response):
            status = supervisor.status("http://127.0.0.1:9810/gateway/health")
        assert status.running
        assert status.pid == os.getpid()
        assert status.pending_count == 3
        assert status.uptime_secs == 42

    def test_status_when_health_unreachable(self, supervisor):
        supervisor.pid_file.write_text(str(os.getpid()))
        with patch("commgate.daemon.httpx.get", side_effect=httpx.ConnectError("refused")):
            status = supervisor.status("http://127.0.0.1:9810/gateway/health")
        assert status.running
        assert status.pending_count is None
        assert status.uptime_secs is not None
