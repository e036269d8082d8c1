"""Process utilities for short-lived OS lookup commands."""
import subprocess
from typing import List, Optional

from loguru import logger

from netpulse.core.constants import MAX_SUBPROCESS_OUTPUT, SUBPROCESS_TIMEOUT
from netpulse.core.exceptions import SubprocessFailure
from netpulse.utils.platform_utils import PlatformUtils


class ProcessUtils:
    """Utility class for running OS commands with hard limits."""

    @staticmethod
    def run_command(
        cmd: List[str],
        timeout: float = SUBPROCESS_TIMEOUT,
        max_output: int = MAX_SUBPROCESS_OUTPUT,
    ) -> str:
        """
        Run a command synchronously and return its (capped) stdout.

        The process never gets a console window on Windows and is killed
        once ``timeout`` expires.

        Args:
            cmd: Command and arguments
            timeout: Timeout in seconds
            max_output: Maximum number of characters of stdout kept

        Returns:
            Captured stdout, truncated to ``max_output`` characters

        Raises:
            SubprocessFailure: command missing, timed out or exited non-zero
        """
        if not cmd or not isinstance(cmd, list):
            raise SubprocessFailure("Invalid command: must be a non-empty list")

        command_str = " ".join(cmd)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                check=False,
                creationflags=PlatformUtils.get_subprocess_flags(),
                startupinfo=PlatformUtils.get_startupinfo(),
            )
        except FileNotFoundError as e:
            raise SubprocessFailure(f"Command not found: {cmd[0]}", command=command_str) from e
        except subprocess.TimeoutExpired as e:
            raise SubprocessFailure(f"Command timed out after {timeout}s", command=command_str) from e
        except (OSError, subprocess.SubprocessError) as e:
            raise SubprocessFailure(f"Failed to run command: {e}", command=command_str) from e

        stdout = result.stdout or ""
        if len(stdout) > max_output:
            logger.debug(f"[ProcessUtils] Output of '{command_str}' truncated to {max_output} chars")
            stdout = stdout[:max_output]

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()[:200]
            raise SubprocessFailure(
                f"Command exited with code {result.returncode}: {stderr}",
                command=command_str,
                returncode=result.returncode,
                output=stdout,
            )

        return stdout

    @staticmethod
    def spawn(cmd: List[str]) -> Optional[subprocess.Popen]:
        """
        Start a long-running command with a line-buffered stdout pipe.

        Returns:
            Popen object or None if the command could not be started
        """
        if not cmd or not isinstance(cmd, list):
            logger.error("Invalid command: must be a non-empty list")
            return None

        try:
            return subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                stdin=subprocess.DEVNULL,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                shell=False,
                creationflags=PlatformUtils.get_subprocess_flags(),
                startupinfo=PlatformUtils.get_startupinfo(),
            )
        except FileNotFoundError:
            logger.info(f"[ProcessUtils] Command not available: {cmd[0]}")
            return None
        except (OSError, subprocess.SubprocessError, ValueError) as e:
            logger.error(f"Failed to run command {' '.join(cmd)}: {e}")
            return None

    @staticmethod
    def terminate(proc: Optional[subprocess.Popen], timeout: float = 2.0) -> None:
        """Terminate a spawned process, killing it if it does not exit in time."""
        if proc is None or proc.poll() is not None:
            return
        try:
            proc.terminate()
            proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait(timeout=timeout)
        except OSError as e:
            logger.debug(f"[ProcessUtils] Error terminating process {proc.pid}: {e}")
