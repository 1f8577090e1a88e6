"""
PM2 Log Source

Launches `pm2 logs` as a streaming child process and yields sanitized
lines from its stdout and stderr as they arrive.
"""

import asyncio
import shutil
import subprocess
import sys
from pathlib import Path
from typing import AsyncIterator, Optional
from loguru import logger

from pm2relay.config import get_settings
from pm2relay.sources.sanitizer import LineSanitizer

# Max bytes for a single line before the reader discards it
STREAM_LIMIT = 1024 * 1024

INSTALL_HINT = "Please install pm2 globally (npm i -g pm2) or add it to this project."


class SourceUnavailableError(Exception):
    """Raised when the pm2 log process cannot be launched."""
    pass


def find_pm2_executable(cwd: Optional[Path] = None) -> Optional[str]:
    """
    Locate the pm2 executable.

    Checks ./node_modules/.bin first, then PATH.

    Args:
        cwd: Project directory to search (default: current directory)

    Returns:
        Path to pm2, or None if not found
    """
    name = "pm2.cmd" if sys.platform == "win32" else "pm2"
    local_bin = Path(cwd or Path.cwd()) / "node_modules" / ".bin" / name
    if local_bin.exists():
        return str(local_bin)
    return shutil.which("pm2")


def build_launch_commands(app_name: str, executable: Optional[str] = None) -> list[list[str]]:
    """
    Build the launch strategies for `pm2 logs`, in order of preference.

    `--lines 0` skips the backlog so only new output is relayed.

    Args:
        app_name: PM2 app name or "all"
        executable: pm2 executable if one was found

    Returns:
        Primary command followed by the npx fallback (npx only when no executable)
    """
    logs_args = ["logs", app_name, "--raw", "--lines", "0"]
    npx_command = ["npx", "pm2", *logs_args]
    if executable:
        return [[executable, *logs_args], npx_command]
    return [npx_command]


class Pm2LogSource:
    """
    Streams sanitized lines from a `pm2 logs` child process.

    The sequence is unbounded and can be consumed once; it ends when the
    child closes both of its output streams.

    Usage:
        source = Pm2LogSource(app_name="api")
        await source.start()
        async for line in source.lines():
            send_queue.submit(line)
        exit_code = await source.wait()
    """

    def __init__(
        self,
        app_name: Optional[str] = None,
        commands: Optional[list[list[str]]] = None,
        sanitizer: Optional[LineSanitizer] = None,
    ):
        """
        Initialize the log source.

        Args:
            app_name: PM2 app name (default from settings)
            commands: Launch commands to try in order (default: pm2, then npx)
            sanitizer: Line sanitizer (default: one bound to app_name)
        """
        if app_name is None:
            app_name = get_settings().pm2_app_name
        self.app_name = app_name
        self._commands = commands or build_launch_commands(app_name, find_pm2_executable())
        self._sanitizer = sanitizer or LineSanitizer(app_name=app_name)
        self._process: Optional[asyncio.subprocess.Process] = None

    @property
    def process(self) -> Optional[asyncio.subprocess.Process]:
        return self._process

    async def start(self) -> None:
        """
        Launch the pm2 log process.

        Tries each launch command in turn.

        Raises:
            SourceUnavailableError: If every launch strategy fails
        """
        for attempt, command in enumerate(self._commands):
            if attempt > 0:
                logger.warning(f"Attempting to run via {command[0]}...")
            try:
                self._process = await self._spawn(command)
            except OSError as e:
                logger.error(f"Failed to start pm2 via {command[0]}: {e}")
                continue

            logger.bind(command=command, pid=self._process.pid).info(
                f"Streaming pm2 logs for {self.app_name}"
            )
            return

        raise SourceUnavailableError(f"Failed to start pm2. {INSTALL_HINT}")

    async def _spawn(self, command: list[str]) -> asyncio.subprocess.Process:
        if sys.platform == "win32":
            # pm2/npx are .cmd shims on Windows and need a shell
            return await asyncio.create_subprocess_shell(
                subprocess.list2cmdline(command),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        return await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=STREAM_LIMIT,
        )

    async def lines(self) -> AsyncIterator[str]:
        """
        Yield sanitized lines from stdout and stderr as they arrive.

        Starts the process if start() was not called.
        """
        if self._process is None:
            await self.start()

        queue: asyncio.Queue[Optional[str]] = asyncio.Queue()
        readers = [
            asyncio.create_task(self._pump(self._process.stdout, False, queue)),
            asyncio.create_task(self._pump(self._process.stderr, True, queue)),
        ]
        open_streams = len(readers)

        try:
            while open_streams:
                line = await queue.get()
                if line is None:
                    open_streams -= 1
                    continue
                yield line
        finally:
            for reader in readers:
                reader.cancel()
            await asyncio.gather(*readers, return_exceptions=True)

    async def _pump(
        self,
        stream: asyncio.StreamReader,
        is_stderr: bool,
        queue: "asyncio.Queue[Optional[str]]",
    ) -> None:
        """Read one output stream line by line until EOF."""
        try:
            while True:
                try:
                    raw = await stream.readline()
                except ValueError as e:
                    logger.warning(f"Skipping oversized pm2 output line: {e}")
                    continue
                if not raw:
                    break
                text = self._sanitizer.sanitize(
                    raw.decode("utf-8", errors="replace").rstrip("\r\n"),
                    is_stderr=is_stderr,
                )
                if text:
                    await queue.put(text)
        finally:
            queue.put_nowait(None)

    async def wait(self) -> Optional[int]:
        """
        Wait for the pm2 process to exit.

        Returns:
            Exit code, or None when the process was never started
        """
        if self._process is None:
            return None
        return await self._process.wait()

    def terminate(self) -> None:
        """Stop the pm2 process if it is still running."""
        if self._process is None or self._process.returncode is not None:
            return
        try:
            self._process.terminate()
        except ProcessLookupError:
            pass
