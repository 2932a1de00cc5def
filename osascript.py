"""
osascript process invoker for Notes automation.

Every query runs as its own osascript subprocess. This module owns the
subprocess mechanics: deadline enforcement, concurrent draining of stdout and
stderr, exit-status classification and a registry of live processes so they
can all be terminated on shutdown.
"""
import os
import signal
import subprocess
import threading
from enum import Enum
from typing import Callable


DEFAULT_OSASCRIPT = "/usr/bin/osascript"

# Substrings osascript prints when Automation access to Notes is refused
PERMISSION_SIGNATURES = ("not allowed", "permission", "-1743")

# osascript exits with 15 when it is sent SIGTERM through its own handler
TERMINATED_STATUS = 15


class Dialect(str, Enum):
    APPLESCRIPT = "applescript"
    JXA = "jxa"


# =============================================================================
# EXCEPTIONS
# =============================================================================

class NotesError(Exception):
    """Base class for failures talking to the Notes app."""
    pass


class ScriptTimeoutError(NotesError, TimeoutError):
    """Raised when an invocation exceeds its deadline or is killed by a signal."""

    def __init__(self, message: str = "Notes did not respond before the deadline"):
        super().__init__(message)


class PermissionDeniedError(NotesError):
    """Raised when macOS refuses Automation access to Notes."""

    def __init__(self, message: str = (
            "Access to Notes was denied. Allow it under System Settings > "
            "Privacy & Security > Automation.")):
        super().__init__(message)


class ScriptFailedError(NotesError):
    """Raised when osascript exits non-zero for any other reason."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Script failed: {detail}")


class ParseError(NotesError):
    """Raised when script output cannot be decoded."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Could not parse script output: {detail}")


Invoker = Callable[[Dialect, str, float], str]


# =============================================================================
# PROCESS REGISTRY
# =============================================================================

class ProcessRegistry:
    """Live osascript processes, shared by every invocation of one run."""

    def __init__(self):
        self._lock = threading.Lock()
        self._processes: list[subprocess.Popen] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def spawn(self, command: list[str]) -> subprocess.Popen:
        """
        Launch and register a process in one step under the lock, so
        terminate_all() never misses a process that is starting up.

        Raises:
            ScriptFailedError: Registry already shut down
            OSError: Executable could not be launched
        """
        with self._lock:
            if self._closed:
                raise ScriptFailedError("shutting down, osascript not launched")
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE
            )
            self._processes.append(process)
        return process

    def unregister(self, process: subprocess.Popen) -> None:
        with self._lock:
            if process in self._processes:
                self._processes.remove(process)

    def terminate_all(self) -> int:
        """
        Send SIGTERM to every live process, clear the registry and refuse
        further launches.

        Returns:
            Number of processes that were still running
        """
        with self._lock:
            self._closed = True
            processes = list(self._processes)
            self._processes.clear()

        terminated = 0
        for process in processes:
            if process.poll() is None:
                try:
                    process.terminate()
                    terminated += 1
                except ProcessLookupError:
                    pass
        return terminated

    def __len__(self) -> int:
        with self._lock:
            return len(self._processes)


def kill_stray_processes(name: str = "osascript") -> list[int]:
    """
    Best-effort sweep for child processes that escaped the registry.

    Uses pgrep to find children of this process with the given name and
    sends each one SIGTERM.

    Returns:
        PIDs that were signalled
    """
    try:
        result = subprocess.run(
            ["pgrep", "-P", str(os.getpid()), name],
            capture_output=True,
            text=True,
            timeout=10
        )
    except (OSError, subprocess.SubprocessError):
        return []

    killed = []
    for line in result.stdout.splitlines():
        line = line.strip()
        if not line.isdigit():
            continue
        pid = int(line)
        try:
            os.kill(pid, signal.SIGTERM)
            killed.append(pid)
        except (ProcessLookupError, PermissionError):
            pass
    return killed


# =============================================================================
# INVOCATION
# =============================================================================

def build_command(executable: str, dialect: Dialect, script: str) -> list[str]:
    """argv for one osascript run; the script body is passed with -e."""
    if dialect == Dialect.JXA:
        return [executable, "-l", "JavaScript", "-e", script]
    return [executable, "-e", script]


def is_permission_error(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(signature in lowered for signature in PERMISSION_SIGNATURES)


class OsascriptInvoker:
    """
    Runs one script per call and returns its trimmed stdout.

    Instances are callable, so they satisfy the Invoker signature used by
    NotesExtractor.
    """

    def __init__(self, executable: str = DEFAULT_OSASCRIPT,
                 registry: ProcessRegistry | None = None):
        self.executable = executable
        self.registry = registry if registry is not None else ProcessRegistry()

    def __call__(self, dialect: Dialect, script: str, timeout: float) -> str:
        return self.invoke(dialect, script, timeout)

    def invoke(self, dialect: Dialect, script: str, timeout: float) -> str:
        """
        Run a script and classify how the process ended.

        Args:
            dialect: AppleScript or JXA
            script: Script source
            timeout: Seconds before the process is terminated (<= 0 disables)

        Returns:
            stdout with surrounding newlines trimmed

        Raises:
            ScriptTimeoutError: Deadline hit or process killed by a signal
            PermissionDeniedError: Automation access refused
            ScriptFailedError: Any other non-zero exit, or osascript missing
        """
        command = build_command(self.executable, dialect, script)
        try:
            process = self.registry.spawn(command)
        except OSError as e:
            raise ScriptFailedError(f"cannot launch {self.executable}: {e}") from e

        expired = threading.Event()
        timer = None
        if timeout and timeout > 0:
            timer = threading.Timer(timeout, self._expire, args=(process, expired))
            timer.daemon = True
            timer.start()

        try:
            stdout, stderr = self._drain(process)
        finally:
            if timer is not None:
                timer.cancel()
            self.registry.unregister(process)

        output = stdout.decode("utf-8", errors="replace")
        error_output = stderr.decode("utf-8", errors="replace")
        status = process.returncode

        if expired.is_set() or status < 0 or status == TERMINATED_STATUS:
            raise ScriptTimeoutError()

        if status != 0:
            if is_permission_error(error_output):
                raise PermissionDeniedError()
            raise ScriptFailedError(error_output.strip())

        return output.strip("\r\n")

    @staticmethod
    def _expire(process: subprocess.Popen, expired: threading.Event) -> None:
        if process.poll() is None:
            expired.set()
            try:
                process.terminate()
            except ProcessLookupError:
                pass

    @staticmethod
    def _drain(process: subprocess.Popen) -> tuple[bytes, bytes]:
        # Both pipes are read at once: reading one to EOF first deadlocks as
        # soon as the other fills the OS pipe buffer.
        chunks = {"stdout": b"", "stderr": b""}

        def read(name, stream):
            chunks[name] = stream.read()
            stream.close()

        readers = [
            threading.Thread(target=read, args=("stdout", process.stdout), daemon=True),
            threading.Thread(target=read, args=("stderr", process.stderr), daemon=True),
        ]
        for reader in readers:
            reader.start()

        process.wait()
        for reader in readers:
            reader.join()

        return chunks["stdout"], chunks["stderr"]
