"""
Daemon Supervisor
=================

Owns the gateway's background-process state: the pid file and the daemon
log file. One gateway per machine; a pid file naming a live process is the
mutex.

    start   spawn ``python -m commgate start --foreground`` in a new session,
            stdout/stderr appended to the log file, pid and host:port written
    stop    SIGTERM, wait up to 5 s, SIGKILL if still alive, remove pid file
    status  liveness, uptime (process create time), pending count via
            GET /gateway/health

The foreground server receives the same supervisor through ``create_app``
and (re)writes / removes its own pid in the lifespan hooks, so a server
started directly with ``--foreground`` is visible to ``status``/``stop``.
"""

import logging
import os
import signal
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import httpx
import psutil

logger = logging.getLogger(__name__)

STOP_GRACE_S = 5.0
STARTUP_CHECK_S = 0.5


class DaemonError(Exception):
    """Start/stop refused or failed."""


@dataclass(frozen=True)
class DaemonStatus:
    running: bool
    pid: Optional[int] = None
    uptime_secs: Optional[int] = None
    pending_count: Optional[int] = None
    log_file: Optional[Path] = None


class DaemonSupervisor:
    def __init__(self, pid_file: Path, log_file: Path, address: Optional[Tuple[str, int]] = None):
        self.pid_file = Path(pid_file)
        self.log_file = Path(log_file)
        self.address = address

    # -- pid file ------------------------------------------------------------
    # Line 1 is the pid, line 2 the bound host:port when known.

    def _read_lines(self) -> List[str]:
        try:
            return self.pid_file.read_text().splitlines()
        except FileNotFoundError:
            return []

    def read_pid(self) -> Optional[int]:
        lines = self._read_lines()
        if not lines:
            return None
        try:
            return int(lines[0].strip())
        except ValueError:
            return None

    def recorded_address(self) -> Optional[Tuple[str, int]]:
        """host/port the running server was started on, if it recorded one."""
        lines = self._read_lines()
        if len(lines) < 2 or ":" not in lines[1]:
            return None
        host, _, port = lines[1].strip().rpartition(":")
        try:
            return host, int(port)
        except ValueError:
            return None

    def _write_pid(self, pid: int, address: Optional[Tuple[str, int]] = None) -> None:
        self.pid_file.parent.mkdir(parents=True, exist_ok=True)
        text = f"{pid}\n"
        if address is not None:
            text += f"{address[0]}:{address[1]}\n"
        tmp = self.pid_file.with_suffix(".tmp")
        tmp.write_text(text)
        tmp.replace(self.pid_file)

    def _remove_pid_file(self) -> None:
        try:
            self.pid_file.unlink()
        except FileNotFoundError:
            pass

    @staticmethod
    def _is_alive(pid: int) -> bool:
        try:
            proc = psutil.Process(pid)
            return proc.status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return psutil.pid_exists(pid)

    def running_pid(self) -> Optional[int]:
        """Pid of the live gateway, cleaning up a stale pid file."""
        pid = self.read_pid()
        if pid is None:
            if self.pid_file.exists():
                logger.warning("Removing unreadable pid file %s", self.pid_file)
                self._remove_pid_file()
            return None
        if self._is_alive(pid):
            return pid
        logger.info("Removing stale pid file %s (pid %d)", self.pid_file, pid)
        self._remove_pid_file()
        return None

    # -- server-side hooks ---------------------------------------------------

    def register_current_process(self) -> None:
        me = os.getpid()
        other = self.running_pid()
        if other is not None and other != me:
            raise DaemonError(f"Gateway already running (pid {other})")
        self._write_pid(me, self.address)

    def release_current_process(self) -> None:
        if self.read_pid() == os.getpid():
            self._remove_pid_file()

    # -- operator commands ---------------------------------------------------

    def _server_command(self, host: str, port: int) -> List[str]:
        return [
            sys.executable, "-m", "commgate", "start", "--foreground",
            "--host", host, "--port", str(port),
        ]

    def start(self, host: str, port: int) -> int:
        """Spawn the detached server. Returns its pid."""
        existing = self.running_pid()
        if existing is not None:
            raise DaemonError(f"Gateway already running (pid {existing})")

        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.log_file, "ab") as log:
            proc = subprocess.Popen(
                self._server_command(host, port),
                stdin=subprocess.DEVNULL,
                stdout=log,
                stderr=subprocess.STDOUT,
                start_new_session=True,
                close_fds=True,
            )
        self._write_pid(proc.pid, (host, port))

        time.sleep(STARTUP_CHECK_S)
        if proc.poll() is not None:
            self._remove_pid_file()
            raise DaemonError(
                f"Gateway exited during startup (code {proc.returncode}); see {self.log_file}"
            )
        logger.info("Gateway started (pid %d) on %s:%d", proc.pid, host, port)
        return proc.pid

    def stop(self, grace_s: float = STOP_GRACE_S) -> Optional[int]:
        """Terminate the running gateway. Returns the stopped pid, or None if not running."""
        pid = self.running_pid()
        if pid is None:
            return None

        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            self._remove_pid_file()
            return pid
        except PermissionError as exc:
            raise DaemonError(f"Not permitted to signal pid {pid}") from exc

        deadline = time.monotonic() + grace_s
        while self._is_alive(pid) and time.monotonic() < deadline:
            time.sleep(0.1)

        if self._is_alive(pid):
            logger.error("Gateway pid %d still alive after SIGTERM, sending SIGKILL", pid)
            try:
                os.kill(pid, signal.SIGKILL)
            except OSError:
                pass

        self._remove_pid_file()
        logger.info("Gateway stopped (pid %d)", pid)
        return pid

    def base_url(self, default_host: str, default_port: int) -> str:
        host, port = self.recorded_address() or (default_host, default_port)
        return f"http://{host}:{port}"

    def status(self, health_url: str, timeout: float = 2.0) -> DaemonStatus:
        pid = self.running_pid()
        if pid is None:
            return DaemonStatus(running=False, log_file=self.log_file)

        uptime: Optional[int] = None
        try:
            uptime = int(time.time() - psutil.Process(pid).create_time())
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass

        pending: Optional[int] = None
        try:
            response = httpx.get(health_url, timeout=timeout)
            response.raise_for_status()
            data = response.json().get("data", {})
            pending = data.get("pending_count")
            uptime = data.get("uptime_secs", uptime)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Health check %s failed: %s", health_url, exc)

        return DaemonStatus(
            running=True, pid=pid, uptime_secs=uptime, pending_count=pending, log_file=self.log_file,
        )
