"""Probe Process Launching and Handles.

ProcessLauncher spawns one probe invocation; the returned ProcessHandle is
the only way the rest of the runner touches that process.

Liveness checks go through ``os.waitid(..., WNOWAIT)``, which observes an
exit without reaping the child. The pid therefore stays reserved (as a
zombie) until ``wait()`` is called, so a kill issued from the watchdog
can never reach an unrelated process that reused the pid. ``wait()`` must
only be called once no other thread can still signal the handle.
"""

from __future__ import annotations

import os
import select
import subprocess
import time
from collections.abc import Sequence
from pathlib import Path

import psutil

from monitor_runner.core.constants import EXIT_POLL_STEP
from monitor_runner.core.exceptions import KillError, LaunchError, WaitError
from monitor_runner.utils.logger import get_logger

logger = get_logger(__name__)


def tokenize_command(command: str) -> list[str]:
    """Split a probe command on whitespace.

    There is no shell quoting or escaping: ``sh -c 'a b'`` becomes four
    tokens. Use a structured argv when arguments contain spaces.

    Args:
        command: Command string

    Returns:
        Argument vector, first token is the executable

    """
    return command.split()


def _returncode_from_waitid(info: os.waitid_result) -> int:
    """Convert a waitid result to the subprocess returncode convention."""
    if info.si_code == os.CLD_EXITED:
        return info.si_status
    # CLD_KILLED / CLD_DUMPED carry the signal number
    return -info.si_status


class ProcessHandle:
    """Handle to one spawned probe process.

    Owned by the RunExecutor that launched it for a single cycle. The
    watchdog may call ``try_wait()`` and ``terminate()`` concurrently with
    the owner's ``wait_for_exit()``; all three leave the child unreaped.
    """

    def __init__(
        self,
        process: subprocess.Popen[bytes],
        ps_process: psutil.Process,
        argv: list[str],
        kill_process_tree: bool = True,
    ):
        self._process = process
        self._ps_process = ps_process
        self.argv = argv
        self.pid = process.pid
        self.kill_process_tree = kill_process_tree
        self.signals_sent = 0

    def __repr__(self) -> str:
        return f"ProcessHandle(pid={self.pid}, argv={self.argv!r})"

    @property
    def is_alive(self) -> bool:
        """True while the probe has not exited."""
        return self.try_wait() is None

    def try_wait(self) -> int | None:
        """Non-blocking status check that does not reap the process.

        Returns:
            Exit code (negative signal number if killed), or None if running

        Raises:
            WaitError: If the OS refuses to report the child's status

        """
        if self._process.returncode is not None:
            return self._process.returncode
        try:
            info = os.waitid(
                os.P_PID, self.pid, os.WEXITED | os.WNOHANG | os.WNOWAIT
            )
        except ChildProcessError:
            # Reaped outside this handle; Popen records what it can
            return self._process.poll()
        except OSError as e:
            raise WaitError(
                f"cannot poll probe pid {self.pid}: {e}", context={"pid": self.pid}
            ) from e
        if info is None:
            return None
        return _returncode_from_waitid(info)

    def wait_for_exit(self, timeout: float | None = None) -> bool:
        """Block until the probe exits, without reaping it.

        Args:
            timeout: Maximum seconds to block, None blocks indefinitely

        Returns:
            True if the probe has exited, False if the timeout elapsed first

        Raises:
            WaitError: If the OS refuses to report the child's status

        """
        if self._process.returncode is not None:
            return True

        if timeout is None:
            try:
                os.waitid(os.P_PID, self.pid, os.WEXITED | os.WNOWAIT)
            except ChildProcessError:
                self._process.poll()
            except OSError as e:
                raise WaitError(
                    f"cannot wait for probe pid {self.pid}: {e}",
                    context={"pid": self.pid},
                ) from e
            return True

        timeout = max(timeout, 0.0)
        pidfd = self._open_pidfd()
        if pidfd is not None:
            try:
                select.select([pidfd], [], [], timeout)
            finally:
                os.close(pidfd)
            return self.try_wait() is not None

        deadline = time.monotonic() + timeout
        while self.try_wait() is None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            time.sleep(min(EXIT_POLL_STEP, remaining))
        return True

    def wait(self) -> int:
        """Block until the probe exits and reap it.

        Returns:
            Exit code (negative signal number if killed)

        Raises:
            WaitError: If waiting on the child fails

        """
        try:
            return self._process.wait()
        except OSError as e:
            raise WaitError(
                f"cannot reap probe pid {self.pid}: {e}", context={"pid": self.pid}
            ) from e

    def reap_nowait(self) -> int | None:
        """Reap the probe if it has exited, without blocking."""
        return self._process.poll()

    def terminate(self) -> bool:
        """Send a single SIGKILL to the probe (and its descendants).

        Terminating a probe that already exited is not an error: nothing
        is sent and False is returned.

        Returns:
            True if the kill signal was delivered to the probe

        Raises:
            KillError: If the signal could not be delivered

        """
        if self.try_wait() is not None:
            logger.debug("probe_already_exited", pid=self.pid)
            return False

        descendants: list[psutil.Process] = []
        if self.kill_process_tree:
            try:
                descendants = self._ps_process.children(recursive=True)
            except psutil.Error as e:
                logger.debug("probe_children_unavailable", pid=self.pid, error=str(e))

        try:
            self._ps_process.kill()
        except psutil.NoSuchProcess:
            logger.debug("probe_already_gone", pid=self.pid)
            return False
        except (psutil.AccessDenied, OSError) as e:
            raise KillError(
                f"cannot kill probe pid {self.pid}: {e}", context={"pid": self.pid}
            ) from e

        self.signals_sent += 1

        for child in descendants:
            try:
                child.kill()
            except psutil.Error as e:
                logger.debug(
                    "descendant_kill_skipped",
                    pid=child.pid,
                    error=str(e),
                )

        logger.debug(
            "probe_killed", pid=self.pid, descendants_count=len(descendants)
        )
        return True

    def _open_pidfd(self) -> int | None:
        if not hasattr(os, "pidfd_open"):
            return None
        try:
            return os.pidfd_open(self.pid)
        except OSError as e:
            logger.debug("pidfd_unavailable", error=str(e))
            return None


class ProcessLauncher:
    """Starts probe invocations as child processes.

    The probe inherits stdout/stderr; stdin is closed so a probe can never
    block on terminal input.
    """

    def __init__(
        self,
        kill_process_tree: bool = True,
        env: dict[str, str] | None = None,
        cwd: Path | None = None,
    ):
        """Initialize launcher.

        Args:
            kill_process_tree: Whether handles also kill descendants on terminate
            env: Environment for the probe (defaults to the runner's environment)
            cwd: Working directory for the probe

        """
        self.kill_process_tree = kill_process_tree
        self.env = env
        self.cwd = cwd

    def launch(self, command: str | Sequence[str]) -> ProcessHandle:
        """Start one probe invocation.

        Args:
            command: Command string (whitespace-tokenized) or argv sequence

        Returns:
            ProcessHandle for the running probe

        Raises:
            LaunchError: If the command is empty or the process cannot be created

        """
        argv = (
            tokenize_command(command) if isinstance(command, str) else list(command)
        )
        if not argv:
            raise LaunchError("probe command is empty", error_code="empty_command")

        context = {"argv": argv}
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                env=self.env,
                cwd=self.cwd,
            )
        except FileNotFoundError as e:
            raise LaunchError(
                f"probe executable not found: {argv[0]}",
                error_code="not_found",
                context=context,
            ) from e
        except PermissionError as e:
            raise LaunchError(
                f"permission denied executing probe: {argv[0]}",
                error_code="permission_denied",
                context=context,
            ) from e
        except OSError as e:
            raise LaunchError(
                f"cannot start probe {argv[0]}: {e}",
                error_code="spawn_failed",
                context=context,
            ) from e

        try:
            ps_process = psutil.Process(process.pid)
        except psutil.Error as e:
            process.kill()
            process.wait()
            raise LaunchError(
                f"cannot attach to probe pid {process.pid}: {e}",
                error_code="attach_failed",
                context=context,
            ) from e

        logger.debug("probe_launched", pid=process.pid, argv=argv)
        return ProcessHandle(
            process, ps_process, argv, kill_process_tree=self.kill_process_tree
        )
