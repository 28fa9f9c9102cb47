# bedrockci/core/process.py
"""Runs a Bedrock Dedicated Server inside a session workspace.

:class:`ServerProcess` spawns ``bedrock_server`` with its working directory set
to the workspace and exposes the merged stdout/stderr stream as text lines. A
background reader thread splits the byte stream on newlines and hands lines to
the consumer through a queue; when the stream ends, a final partial line (if
any) is delivered followed by an end-of-stream marker.

Stopping follows the server's own protocol: ``stop`` is written to stdin and
the server gets a grace period to shut down before the whole process tree is
killed with ``psutil``. The process is always reaped.
"""
import collections
import logging
import os
import queue
import subprocess
import threading
from typing import Deque, List, Optional

import psutil

from bedrockci.core.workspace import SessionWorkspace
from bedrockci.error import SpawnError, WorkspaceSetupError

logger = logging.getLogger(__name__)

STOP_COMMAND = "stop"
RECENT_LINES = 200

_EOF = object()


class ServerProcess:
    """A running server bound to one workspace. Create with :meth:`launch`."""

    def __init__(self, process: subprocess.Popen, workspace: SessionWorkspace, command: List[str]):
        self._process = process
        self.workspace = workspace
        self.command = command
        self._lines: "queue.Queue[object]" = queue.Queue()
        self._eof = False
        self._recent_lines: Deque[str] = collections.deque(maxlen=RECENT_LINES)
        self._stop_lock = threading.Lock()
        self._stopped = False
        self._reader_thread = threading.Thread(
            target=self._pump_output,
            name=f"bedrockci-reader-{process.pid}",
            daemon=True,
        )
        self._reader_thread.start()

    @classmethod
    def launch(cls, workspace: SessionWorkspace, extra_args: Optional[List[str]] = None) -> "ServerProcess":
        """Starts the server binary in ``workspace``.

        Raises:
            SpawnError: If the binary is missing, not executable, cannot be
                started, or the workspace is already running a server.
        """
        executable = workspace.executable_path
        if not os.path.isfile(executable):
            logger.error(f"Server executable not found at '{executable}'.")
            raise SpawnError(executable, "Server executable not found")
        if not os.access(executable, os.X_OK):
            logger.error(f"Server executable '{executable}' is not executable.")
            raise SpawnError(executable, "Server executable is not executable")

        try:
            workspace.claim()
        except WorkspaceSetupError as e:
            raise SpawnError(executable, str(e)) from e

        command = [executable] + list(extra_args or [])
        env = os.environ.copy()
        env["LD_LIBRARY_PATH"] = "."

        logger.info(f"Starting server in {workspace.path}")
        try:
            process = subprocess.Popen(
                command,
                cwd=workspace.path,
                env=env,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            workspace.release()
            logger.error(f"Failed to start server '{executable}': {e}", exc_info=True)
            raise SpawnError(executable, f"Failed to start server ({e})") from e

        logger.info(f"Server started with PID {process.pid}.")
        return cls(process, workspace, command)

    def _pump_output(self) -> None:
        stream = self._process.stdout
        try:
            for raw_line in iter(stream.readline, b""):
                line = raw_line.decode("utf-8", errors="replace").rstrip("\r\n")
                self._recent_lines.append(line)
                self._lines.put(line)
        except (OSError, ValueError) as e:
            # The pipe is closed underneath the reader when the process is killed.
            logger.debug(f"Output stream of PID {self._process.pid} closed: {e}")
        finally:
            self._lines.put(_EOF)

    def next_line(self, timeout: Optional[float] = None) -> Optional[str]:
        """Returns the next output line, or None once the stream is exhausted.

        Blocks until a line is available or the stream ends.

        Raises:
            queue.Empty: If ``timeout`` seconds pass with no line and no EOF.
        """
        if self._eof:
            return None
        item = self._lines.get(timeout=timeout)
        if item is _EOF:
            self._eof = True
            return None
        return item

    def send_command(self, command: str) -> None:
        """Writes a console command to the server's stdin."""
        stdin = self._process.stdin
        if stdin is None or stdin.closed:
            logger.debug(f"Cannot send '{command}': stdin of PID {self.pid} is closed.")
            return
        logger.debug(f"Sending command '{command}' to PID {self.pid}")
        stdin.write(f"{command}\n".encode("utf-8"))
        stdin.flush()

    def poll(self) -> Optional[int]:
        return self._process.poll()

    def is_running(self) -> bool:
        return self.poll() is None

    def wait(self, timeout: Optional[float] = None) -> int:
        return self._process.wait(timeout=timeout)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    @property
    def recent_lines(self) -> List[str]:
        return list(self._recent_lines)

    def stop(self, grace_period: float = 10.0) -> Optional[int]:
        """Stops the server, gracefully if possible, and reaps it.

        Sends ``stop`` and waits up to ``grace_period`` seconds; if the server
        is still running after that, the process and its children are killed.
        Safe to call more than once.

        Returns:
            The process exit code.
        """
        with self._stop_lock:
            if self._stopped:
                return self._process.returncode

            if self._process.poll() is None:
                try:
                    self.send_command(STOP_COMMAND)
                except (OSError, ValueError) as e:
                    logger.debug(f"Could not send stop command to PID {self.pid}: {e}")
                try:
                    self._process.wait(timeout=grace_period)
                    logger.info(f"Server PID {self.pid} stopped gracefully.")
                except subprocess.TimeoutExpired:
                    logger.warning(
                        f"Server PID {self.pid} did not stop within {grace_period}s. Killing process."
                    )
                    self._kill_tree()
                    self._process.wait()
            else:
                logger.debug(f"Server PID {self.pid} already exited with {self._process.returncode}.")

            self._close_pipe(self._process.stdin)
            self._reader_thread.join(timeout=5)
            if self._reader_thread.is_alive():
                # A leftover grandchild still holds the pipe open.
                logger.warning(f"Output reader for PID {self.pid} did not finish.")
            else:
                self._close_pipe(self._process.stdout)
            self.workspace.release()
            self._stopped = True
            return self._process.returncode

    def _kill_tree(self) -> None:
        try:
            parent = psutil.Process(self._process.pid)
            children = parent.children(recursive=True)
        except psutil.NoSuchProcess:
            children = []
        for child in children:
            try:
                child.kill()
            except psutil.NoSuchProcess:
                continue
        try:
            self._process.kill()
        except ProcessLookupError:
            pass

    def _close_pipe(self, stream) -> None:
        if stream is None:
            return
        try:
            stream.close()
        except OSError as e:
            logger.debug(f"Error closing pipe of PID {self.pid}: {e}")
