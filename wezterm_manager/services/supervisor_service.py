"""
Supervision of the wezterm-mux-server daemon.

Liveness has two sources: the pid marker written after a successful start,
and a scan of the process table by binary name. The marker is checked first;
a marker naming a dead process, or one that is not the mux server, is
cleared and the scan decides.
"""
import logging
import os
import re
import signal
import subprocess
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import psutil

from ..models.errors import BinaryMissing, StartFailed, StopFailed
from ..models.settings import ManagerSettings
from .boot_script import BootScript
from .config_service import ConfigService

MIN_LOG_LINES = 10
MAX_LOG_LINES = 1000

# Forceful kill is given this long to take effect
KILL_GRACE_SECONDS = 5.0


class ServiceState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class ProcessHandle:
    """Liveness of the supervised daemon."""
    running: bool
    pid: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'running': self.running, 'pid': self.pid}


class ProcessSupervisor:
    """Starts, stops and queries the mux server and manages boot-time autostart."""

    def __init__(self, settings: ManagerSettings, config_service: ConfigService,
                 boot_script: Optional[BootScript] = None,
                 runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
                 sleep: Callable[[float], None] = time.sleep):
        self.settings = settings
        self.config_service = config_service
        self.boot_script = boot_script or BootScript(settings.boot_script, settings.autostart_command)
        self.runner = runner
        self.sleep = sleep
        self.state = ServiceState.STOPPED
        self.logger = logging.getLogger(__name__)

    @property
    def pid_file(self) -> Path:
        return self.settings.pid_file

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    def _read_marker(self) -> Optional[int]:
        try:
            text = self.pid_file.read_text().strip()
        except FileNotFoundError:
            return None
        return int(text) if text.isdigit() and int(text) > 0 else None

    def _write_marker(self, pid: int) -> None:
        self.pid_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.pid_file.with_suffix(".tmp")
        tmp_path.write_text(f"{pid}\n")
        os.replace(tmp_path, self.pid_file)

    def _clear_marker(self) -> None:
        try:
            self.pid_file.unlink()
        except FileNotFoundError:
            pass

    @staticmethod
    def _is_alive(pid: int) -> bool:
        try:
            process = psutil.Process(pid)
            return process.is_running() and process.status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            return psutil.pid_exists(pid)

    def _matches(self, info: Dict[str, Any], config_file: Optional[str]) -> bool:
        binary = os.path.basename(self.settings.mux_server_bin)
        cmdline: List[str] = info.get('cmdline') or []
        named = info.get('name') == binary or (cmdline and os.path.basename(cmdline[0]) == binary)
        if not named:
            return False
        return config_file is None or config_file in cmdline

    def _is_daemon(self, pid: int) -> bool:
        """True if pid is alive and is the mux server, not a process that reused its pid."""
        if not self._is_alive(pid):
            return False
        try:
            info = psutil.Process(pid).as_dict(['name', 'cmdline'])
        except psutil.NoSuchProcess:
            return False
        return self._matches(info, None)

    def _scan_process_table(self, config_file: Optional[str] = None) -> Optional[int]:
        """Lowest pid of a running mux server, optionally launched with a given config file."""
        pids = []
        for process in psutil.process_iter(['pid', 'name', 'cmdline', 'status']):
            try:
                info = process.info
                if info.get('status') == psutil.STATUS_ZOMBIE:
                    continue
                if self._matches(info, config_file):
                    pids.append(info['pid'])
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        return min(pids) if pids else None

    def status(self) -> ProcessHandle:
        """Current liveness, clearing a marker that names a dead or foreign process."""
        pid = self._read_marker()
        if pid is not None:
            if self._is_daemon(pid):
                self.state = ServiceState.RUNNING
                return ProcessHandle(running=True, pid=pid)
            self.logger.info(f"Clearing stale pid file: process {pid} is not a running mux server")
            self._clear_marker()

        pid = self._scan_process_table()
        self.state = ServiceState.RUNNING if pid is not None else ServiceState.STOPPED
        return ProcessHandle(running=pid is not None, pid=pid)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self) -> ProcessHandle:
        """
        Start the mux server unless it is already running.

        Raises:
            BinaryMissing: If the server binary is absent or not executable
            StartFailed: If no process appears within the poll window
        """
        handle = self.status()
        if handle.running:
            self.logger.info(f"WezTerm Server is already running (PID: {handle.pid})")
            return handle

        binary = self.settings.mux_server_bin
        if not (os.path.isfile(binary) and os.access(binary, os.X_OK)):
            raise BinaryMissing(f"WezTerm binary not found at {binary}")

        config_file = self.config_service.ensure_lua()
        log_level = self.config_service.read().log_level

        self.state = ServiceState.STARTING
        self.logger.info("Starting WezTerm Server...")

        env = os.environ.copy()
        env["WEZTERM_LOG"] = log_level
        command = [binary, "--daemonize", "--config-file", config_file]
        try:
            result = self.runner(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                env=env,
                timeout=self.settings.command_timeout
            )
            output = (result.stdout or "").strip()
            return_code = result.returncode
        except subprocess.TimeoutExpired as e:
            output = e.output.decode() if isinstance(e.output, bytes) else (e.output or "")
            return_code = None
        except OSError as e:
            self.state = ServiceState.STOPPED
            raise StartFailed("Failed to start WezTerm Server", output=str(e))

        deadline = time.monotonic() + self.settings.start_poll_seconds
        pid = self._scan_process_table(config_file)
        while pid is None and time.monotonic() < deadline:
            self.sleep(self.settings.poll_interval)
            pid = self._scan_process_table(config_file)

        if pid is None:
            self.state = ServiceState.STOPPED
            detail = output or "no output"
            if return_code not in (None, 0):
                detail = f"exit code {return_code}: {detail}"
            raise StartFailed("Failed to start WezTerm Server", output=detail)

        self._write_marker(pid)
        self.state = ServiceState.RUNNING
        self.logger.info(f"WezTerm Server started successfully (PID: {pid})")
        return ProcessHandle(running=True, pid=pid)

    def stop(self) -> ProcessHandle:
        """
        Stop the mux server: SIGTERM, wait up to stop_timeout, then SIGKILL.

        Raises:
            StopFailed: If the process survives the forceful kill
        """
        handle = self.status()
        if not handle.running:
            self.logger.info("WezTerm Server is not running")
            self._clear_marker()
            return handle

        pid = handle.pid
        self.state = ServiceState.STOPPING
        self.logger.info(f"Stopping WezTerm Server (PID: {pid})...")

        try:
            process = psutil.Process(pid)
            process.send_signal(signal.SIGTERM)
            try:
                process.wait(timeout=self.settings.stop_timeout)
            except psutil.TimeoutExpired:
                self.logger.warning("Process did not stop gracefully, sending SIGKILL...")
                process.kill()
                try:
                    process.wait(timeout=KILL_GRACE_SECONDS)
                except psutil.TimeoutExpired:
                    self.state = ServiceState.RUNNING
                    raise StopFailed(f"Failed to stop WezTerm Server (PID: {pid})")
        except psutil.NoSuchProcess:
            pass
        except psutil.AccessDenied as e:
            self.state = ServiceState.RUNNING
            raise StopFailed(f"Failed to stop WezTerm Server (PID: {pid})", output=str(e))

        self._clear_marker()
        self.state = ServiceState.STOPPED
        self.logger.info("WezTerm Server stopped successfully")
        return ProcessHandle(running=False, pid=None)

    def restart(self) -> ProcessHandle:
        self.logger.info("Restarting WezTerm Server...")
        self.stop()
        self.sleep(self.settings.restart_delay)
        return self.start()

    # ------------------------------------------------------------------
    # Boot-time activation and diagnostics
    # ------------------------------------------------------------------

    def set_autostart(self, enabled: bool, persist: bool = True) -> bool:
        """
        Add or remove the start line in the boot script.

        Args:
            enabled: Whether the server should start at boot
            persist: Mirror the flag into the saved configuration
        """
        if enabled:
            self.boot_script.ensure_present()
        else:
            self.boot_script.ensure_absent()

        if persist and self.config_service.read().autostart != enabled:
            self.config_service.save({"autostart": enabled})
        return enabled

    def get_version(self) -> str:
        binary = self.settings.mux_server_bin
        if not os.path.exists(binary):
            return "Not installed"
        try:
            result = self.runner(
                [binary, "--version"],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.settings.command_timeout
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.warning(f"Could not query WezTerm version: {e}")
            return "Unknown"

        lines = (result.stdout or "").strip().splitlines()
        if result.returncode != 0 or not lines:
            return "Unknown"
        # e.g. "wezterm-mux-server 20240203-110809-5046fc22"
        match = re.match(r"wezterm\S*\s+(.+)", lines[0])
        return match.group(1).strip() if match else lines[0].strip()

    def get_logs(self, lines: int = 100) -> str:
        """Last lines of the daemon log, with the count clamped to [10, 1000]."""
        lines = min(max(int(lines), MIN_LOG_LINES), MAX_LOG_LINES)
        log_file = Path(self.settings.daemon_log_file)
        if not log_file.exists():
            return "No log file found. Service may not have been started yet."

        with open(log_file, "r", errors="replace") as handle:
            tail = deque(handle, maxlen=lines)
        return "".join(tail).rstrip("\n")
