"""
Tests for osascript.py - process invocation, deadlines and exit classification.

A shell script stands in for osascript: it evaluates the script argument as
shell code, so each test chooses the exit status, output and timing.
"""
import subprocess
import threading
import time

import pytest

from osascript import (
    Dialect,
    OsascriptInvoker,
    PermissionDeniedError,
    ProcessRegistry,
    ScriptFailedError,
    ScriptTimeoutError,
    build_command,
    is_permission_error,
    kill_stray_processes,
)


@pytest.fixture
def invoker(fake_osascript):
    return OsascriptInvoker(str(fake_osascript), ProcessRegistry())


def test_build_command_applescript():
    """AppleScript runs with a single -e argument."""
    assert build_command("/usr/bin/osascript", Dialect.APPLESCRIPT, "return 1") == [
        "/usr/bin/osascript", "-e", "return 1"
    ]


def test_build_command_jxa():
    """JXA selects the JavaScript language."""
    assert build_command("/usr/bin/osascript", Dialect.JXA, "1") == [
        "/usr/bin/osascript", "-l", "JavaScript", "-e", "1"
    ]


def test_is_permission_error():
    """Test detection of automation-denied messages."""
    assert is_permission_error("execution error: Not allowed to send Apple events to Notes. (-1743)")
    assert is_permission_error("Permission denied")
    assert not is_permission_error("Can't get folder \"Work\". (-1728)")


def test_invoke_returns_stdout(invoker):
    """Successful run returns stdout."""
    assert invoker(Dialect.APPLESCRIPT, "echo hello", 10) == "hello"


def test_invoke_trims_surrounding_newlines_only(invoker):
    """Test that only surrounding newlines are trimmed."""
    output = invoker(Dialect.APPLESCRIPT, "printf '\\n  a\\nb  \\n\\n'", 10)
    assert output == "  a\nb  "


def test_invoke_jxa_passes_script_last(invoker):
    """Test that JXA scripts run with the language flag."""
    assert invoker(Dialect.JXA, "echo jxa", 10) == "jxa"


def test_invoke_large_output_on_both_streams(invoker):
    """Filling both pipes at once must not deadlock."""
    script = "head -c 300000 /dev/zero | tr '\\0' a; head -c 300000 /dev/zero | tr '\\0' b >&2"
    output = invoker(Dialect.APPLESCRIPT, script, 30)
    assert len(output) == 300000
    assert set(output) == {"a"}


def test_invoke_timeout(invoker):
    """A hung process is terminated at the deadline."""
    start = time.time()
    with pytest.raises(ScriptTimeoutError):
        invoker(Dialect.APPLESCRIPT, "exec sleep 5", 0.5)
    assert time.time() - start < 4


def test_timeout_is_a_timeout_error(invoker):
    """Test that the timeout error is also a builtin TimeoutError."""
    with pytest.raises(TimeoutError):
        invoker(Dialect.APPLESCRIPT, "exec sleep 5", 0.3)


def test_invoke_exit_15_is_timeout(invoker):
    """Test that exit status 15 is classified as a timeout."""
    with pytest.raises(ScriptTimeoutError):
        invoker(Dialect.APPLESCRIPT, "exit 15", 10)


def test_invoke_permission_denied(invoker):
    """Test that error -1743 raises PermissionDeniedError."""
    script = "echo 'Not authorized to send Apple events to Notes. (-1743)' >&2; exit 1"
    with pytest.raises(PermissionDeniedError):
        invoker(Dialect.APPLESCRIPT, script, 10)


def test_invoke_other_failure_carries_stderr(invoker):
    """Test that other failures carry stderr as detail."""
    script = "echo \"Can't get folder (-1728)\" >&2; exit 1"
    with pytest.raises(ScriptFailedError) as exc_info:
        invoker(Dialect.APPLESCRIPT, script, 10)
    assert "-1728" in exc_info.value.detail


def test_invoke_missing_executable(temp_dir):
    """Test that a missing osascript raises ScriptFailedError."""
    invoker = OsascriptInvoker(str(temp_dir / "missing-osascript"))
    with pytest.raises(ScriptFailedError):
        invoker(Dialect.APPLESCRIPT, "echo hi", 10)


def test_registry_empty_after_invocation(invoker):
    """Test that finished invocations leave the registry."""
    invoker(Dialect.APPLESCRIPT, "echo done", 10)
    with pytest.raises(ScriptFailedError):
        invoker(Dialect.APPLESCRIPT, "exit 3", 10)
    assert len(invoker.registry) == 0


def test_terminate_all_interrupts_running_invocation(invoker):
    """Shutdown from another thread ends an in-flight query."""
    outcome = {}

    def run():
        try:
            invoker(Dialect.APPLESCRIPT, "exec sleep 5", 30)
        except Exception as e:
            outcome["error"] = e

    worker = threading.Thread(target=run)
    worker.start()

    deadline = time.time() + 5
    while len(invoker.registry) == 0 and time.time() < deadline:
        time.sleep(0.05)

    assert invoker.registry.terminate_all() == 1
    worker.join(timeout=5)

    assert not worker.is_alive()
    assert isinstance(outcome.get("error"), ScriptTimeoutError)


def test_terminate_all_skips_finished_processes():
    """Test that only processes still running are counted and signalled."""
    registry = ProcessRegistry()
    running = registry.spawn(["sleep", "5"])
    finished = registry.spawn(["true"])
    finished.wait()

    try:
        assert registry.terminate_all() == 1
        assert running.wait(timeout=5) != 0
        assert len(registry) == 0
    finally:
        if running.poll() is None:
            running.kill()


def test_unregister_unknown_process_is_ignored():
    """Test that unregistering an unknown process is harmless."""
    registry = ProcessRegistry()
    process = subprocess.Popen(["true"])
    process.wait()
    registry.unregister(process)
    assert len(registry) == 0


def test_kill_stray_processes_none_found():
    """Test the stray sweep when nothing matches."""
    assert kill_stray_processes("no-such-process-name") == []


def test_spawn_registers_process():
    """Test that a launched process is tracked until unregistered."""
    registry = ProcessRegistry()
    process = registry.spawn(["true"])
    process.wait()

    assert len(registry) == 1
    registry.unregister(process)
    assert len(registry) == 0


def test_no_launch_after_terminate_all(fake_osascript, temp_dir):
    """Test that shutdown also stops queries that have not started yet."""
    registry = ProcessRegistry()
    invoker = OsascriptInvoker(str(fake_osascript), registry)
    marker = temp_dir / "launched"

    registry.terminate_all()

    assert registry.closed
    with pytest.raises(ScriptFailedError):
        invoker(Dialect.APPLESCRIPT, f"touch {marker}", 10)
    assert not marker.exists()
    assert len(registry) == 0
