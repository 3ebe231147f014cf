"""Tests for monitor_runner.core.process module.

Uses real child processes (the running Python interpreter) so that the
waitid/kill behaviour is exercised against the OS.
"""

import signal
import subprocess
import sys
import time
from unittest.mock import Mock, patch

import psutil
import pytest

from monitor_runner.core.exceptions import KillError, LaunchError, WaitError
from monitor_runner.core.process import (
    ProcessHandle,
    ProcessLauncher,
    tokenize_command,
)

pytestmark = pytest.mark.skipif(
    sys.platform == "win32", reason="POSIX process semantics"
)


def wait_until_dead(process: psutil.Process, timeout: float) -> bool:
    """Wait for a non-child process to exit (a zombie counts as dead)."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            if process.status() == psutil.STATUS_ZOMBIE:
                return True
        except psutil.NoSuchProcess:
            return True
        time.sleep(0.05)
    return False


class TestTokenizeCommand:
    """Tests for whitespace tokenization."""

    def test_simple(self):
        """Test splitting on single spaces."""
        assert tokenize_command("sleep 1") == ["sleep", "1"]

    def test_collapses_whitespace(self):
        """Test runs of whitespace act as one separator."""
        assert tokenize_command("  curl\t-fsS   http://x \n") == [
            "curl",
            "-fsS",
            "http://x",
        ]

    def test_no_shell_quoting(self):
        """Test quotes are not interpreted."""
        assert tokenize_command('echo "a b"') == ["echo", '"a', 'b"']

    def test_empty(self):
        """Test an empty command has no tokens."""
        assert tokenize_command("   ") == []


class TestProcessLauncher:
    """Tests for ProcessLauncher."""

    def test_empty_command(self):
        """Test an empty command is a LaunchError."""
        with pytest.raises(LaunchError) as exc_info:
            ProcessLauncher().launch("  ")
        assert exc_info.value.error_code == "empty_command"

    def test_executable_not_found(self):
        """Test a missing executable is a LaunchError."""
        with pytest.raises(LaunchError) as exc_info:
            ProcessLauncher().launch("/nonexistent/probe-binary --flag")
        assert exc_info.value.error_code == "not_found"
        assert exc_info.value.context["argv"][0] == "/nonexistent/probe-binary"

    def test_permission_denied(self, temp_dir):
        """Test a non-executable file is a LaunchError."""
        script = temp_dir / "probe.sh"
        script.write_text("#!/bin/sh\nexit 0\n")
        script.chmod(0o644)
        with pytest.raises(LaunchError) as exc_info:
            ProcessLauncher().launch([str(script)])
        assert exc_info.value.error_code == "permission_denied"

    def test_other_os_error(self):
        """Test other spawn failures are a LaunchError."""
        with patch(
            "monitor_runner.core.process.subprocess.Popen",
            side_effect=OSError("too many processes"),
        ):
            with pytest.raises(LaunchError) as exc_info:
                ProcessLauncher().launch("true")
        assert exc_info.value.error_code == "spawn_failed"

    def test_launch_string_command(self):
        """Test launching from a command string returns a live handle."""
        handle = ProcessLauncher().launch(f"{sys.executable} -c pass")
        assert handle.wait() == 0
        assert handle.argv == [sys.executable, "-c", "pass"]

    def test_launch_argv(self, python_argv):
        """Test launching from an argv sequence."""
        handle = ProcessLauncher().launch(python_argv("import sys; sys.exit(3)"))
        assert handle.wait() == 3

    def test_kill_tree_flag_propagates(self, python_argv):
        """Test the handle inherits the launcher's tree-kill setting."""
        handle = ProcessLauncher(kill_process_tree=False).launch(python_argv("pass"))
        assert handle.kill_process_tree is False
        handle.wait()


class TestProcessHandle:
    """Tests for ProcessHandle against real processes."""

    def test_try_wait_running_then_exited(self, python_argv):
        """Test try_wait reports None while running and the code after exit."""
        handle = ProcessLauncher().launch(
            python_argv("import time; time.sleep(0.3); raise SystemExit(4)")
        )
        assert handle.try_wait() is None
        assert handle.is_alive
        assert handle.wait_for_exit(10.0)
        assert handle.try_wait() == 4
        assert handle.wait() == 4

    def test_try_wait_does_not_reap(self, python_argv):
        """Test the child stays a zombie until wait() reaps it."""
        handle = ProcessLauncher().launch(python_argv("pass"))
        assert handle.wait_for_exit(10.0)
        assert handle.try_wait() == 0
        # still in the process table as a zombie
        assert psutil.pid_exists(handle.pid)
        assert psutil.Process(handle.pid).status() == psutil.STATUS_ZOMBIE
        assert handle.wait() == 0

    def test_wait_for_exit_times_out(self, python_argv):
        """Test wait_for_exit returns False when the probe keeps running."""
        handle = ProcessLauncher().launch(python_argv("import time; time.sleep(30)"))
        try:
            start = time.monotonic()
            assert handle.wait_for_exit(0.2) is False
            assert time.monotonic() - start < 5.0
        finally:
            handle.terminate()
            handle.wait()

    def test_wait_for_exit_without_timeout(self, python_argv):
        """Test blocking wait_for_exit returns once the probe exits."""
        handle = ProcessLauncher().launch(python_argv("pass"))
        assert handle.wait_for_exit() is True
        assert handle.wait() == 0

    def test_terminate_running_probe(self, python_argv):
        """Test terminate sends exactly one SIGKILL."""
        handle = ProcessLauncher().launch(python_argv("import time; time.sleep(30)"))
        assert handle.terminate() is True
        assert handle.signals_sent == 1
        assert handle.wait_for_exit(10.0)
        assert handle.wait() == -signal.SIGKILL
        assert not handle.is_alive

    def test_terminate_exited_probe_is_noop(self, python_argv):
        """Test terminating an exited probe sends nothing and is not an error."""
        handle = ProcessLauncher().launch(python_argv("pass"))
        assert handle.wait_for_exit(10.0)
        assert handle.terminate() is False
        assert handle.signals_sent == 0
        assert handle.wait() == 0

    def test_terminate_after_reap_is_noop(self, python_argv):
        """Test terminating a reaped probe never signals the stale pid."""
        handle = ProcessLauncher().launch(python_argv("pass"))
        handle.wait()
        assert handle.terminate() is False
        assert handle.signals_sent == 0

    def test_terminate_kills_descendants(self, python_argv):
        """Test the probe's children are killed with it."""
        code = (
            "import subprocess, sys, time\n"
            "child = subprocess.Popen([sys.executable, '-c', "
            "'import time; time.sleep(30)'])\n"
            "print(child.pid, flush=True)\n"
            "time.sleep(30)\n"
        )
        process = subprocess.Popen(
            python_argv(code), stdout=subprocess.PIPE, stdin=subprocess.DEVNULL
        )
        child_pid = int(process.stdout.readline())
        handle = ProcessHandle(
            process, psutil.Process(process.pid), list(python_argv(code))
        )
        child = psutil.Process(child_pid)

        assert handle.terminate() is True
        handle.wait()
        process.stdout.close()
        assert wait_until_dead(child, 10.0)
        assert handle.signals_sent == 1

    def test_terminate_access_denied(self):
        """Test a refused kill is a KillError."""
        process = Mock(spec=subprocess.Popen)
        process.pid = 4242
        process.returncode = None
        ps_process = Mock(spec=psutil.Process)
        ps_process.children.return_value = []
        ps_process.kill.side_effect = psutil.AccessDenied(4242)
        handle = ProcessHandle(process, ps_process, ["probe"])

        with patch.object(ProcessHandle, "try_wait", return_value=None):
            with pytest.raises(KillError):
                handle.terminate()
        assert handle.signals_sent == 0

    def test_terminate_vanished_process(self):
        """Test a process that disappeared before the kill is benign."""
        process = Mock(spec=subprocess.Popen)
        process.pid = 4242
        process.returncode = None
        ps_process = Mock(spec=psutil.Process)
        ps_process.children.return_value = []
        ps_process.kill.side_effect = psutil.NoSuchProcess(4242)
        handle = ProcessHandle(process, ps_process, ["probe"])

        with patch.object(ProcessHandle, "try_wait", return_value=None):
            assert handle.terminate() is False
        assert handle.signals_sent == 0

    def test_terminate_skips_unkillable_descendants(self, capture_logs):
        """Test a vanished descendant is logged and the probe still killed."""
        process = Mock(spec=subprocess.Popen)
        process.pid = 4242
        process.returncode = None
        child = Mock(spec=psutil.Process)
        child.pid = 4243
        child.kill.side_effect = psutil.NoSuchProcess(4243)
        ps_process = Mock(spec=psutil.Process)
        ps_process.children.return_value = [child]
        handle = ProcessHandle(process, ps_process, ["probe"])

        with patch.object(ProcessHandle, "try_wait", return_value=None):
            assert handle.terminate() is True
        assert handle.signals_sent == 1
        [skipped] = [e for e in capture_logs if e["event"] == "descendant_kill_skipped"]
        assert skipped["pid"] == 4243

    def test_terminate_children_unavailable(self, capture_logs):
        """Test an unlistable process tree still kills the probe itself."""
        process = Mock(spec=subprocess.Popen)
        process.pid = 4242
        process.returncode = None
        ps_process = Mock(spec=psutil.Process)
        ps_process.children.side_effect = psutil.AccessDenied(4242)
        handle = ProcessHandle(process, ps_process, ["probe"])

        with patch.object(ProcessHandle, "try_wait", return_value=None):
            assert handle.terminate() is True
        ps_process.kill.assert_called_once()
        events = [e["event"] for e in capture_logs]
        assert "probe_children_unavailable" in events

    def test_try_wait_os_error(self):
        """Test an OS failure while polling is a WaitError."""
        process = Mock(spec=subprocess.Popen)
        process.pid = 4242
        process.returncode = None
        handle = ProcessHandle(process, Mock(spec=psutil.Process), ["probe"])

        with patch(
            "monitor_runner.core.process.os.waitid",
            side_effect=PermissionError("denied"),
        ):
            with pytest.raises(WaitError):
                handle.try_wait()

    def test_wait_os_error(self):
        """Test an OS failure while reaping is a WaitError."""
        process = Mock(spec=subprocess.Popen)
        process.pid = 4242
        process.wait.side_effect = OSError("gone")
        handle = ProcessHandle(process, Mock(spec=psutil.Process), ["probe"])
        with pytest.raises(WaitError):
            handle.wait()
