"""Platform change watcher - OS route/link event streams."""
import threading
from typing import Callable, List, Optional

from loguru import logger

from netpulse.utils.platform_utils import Platform, PlatformUtils
from netpulse.utils.process_utils import ProcessUtils

LINUX_MONITOR = ["ip", "monitor", "link", "address", "route"]
MACOS_MONITOR = ["route", "-n", "monitor"]

LINUX_MARKERS = ("link/", "inet", "route", "Deleted", "default")
MACOS_MARKERS = ("RTM_IFINFO", "RTM_NEWADDR", "RTM_DELADDR")


def monitor_command(platform: Platform) -> Optional[List[str]]:
    if platform == Platform.LINUX:
        return LINUX_MONITOR
    if platform == Platform.MACOS:
        return MACOS_MONITOR
    # Windows has no cheap event stream; interface polling covers it
    return None


def is_relevant_line(line: str, platform: Platform) -> bool:
    markers = LINUX_MARKERS if platform == Platform.LINUX else MACOS_MARKERS
    return any(marker in line for marker in markers)


class PlatformChangeWatcher:
    """Reads an OS monitor command and calls ``on_change`` for network events."""

    def __init__(self, on_change: Callable[[], None], platform: Optional[Platform] = None):
        self._on_change = on_change
        self._platform = platform or PlatformUtils.get_platform()
        self._process = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()

    def start(self) -> bool:
        """
        Start the monitor process.

        Returns:
            True if a watcher is running, False when unsupported or the tool is missing
        """
        cmd = monitor_command(self._platform)
        if cmd is None:
            logger.debug(f"[PlatformWatcher] No event monitor for {self._platform.value}")
            return False

        with self._lock:
            if self._process is not None:
                return True

            self._process = ProcessUtils.spawn(cmd)
            if self._process is None:
                logger.info(f"[PlatformWatcher] {cmd[0]} unavailable, relying on interface polling")
                return False

            self._stop_event.clear()
            self._thread = threading.Thread(target=self._read_loop, daemon=True, name="PlatformWatcher")
            self._thread.start()

        logger.info(f"[PlatformWatcher] Watching {' '.join(cmd)}")
        return True

    def stop(self) -> None:
        with self._lock:
            self._stop_event.set()
            process = self._process
            self._process = None
            thread = self._thread
            self._thread = None

        ProcessUtils.terminate(process)
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=2.0)

    def is_running(self) -> bool:
        with self._lock:
            return self._process is not None

    def _read_loop(self):
        process = self._process
        if process is None or process.stdout is None:
            return

        try:
            for line in process.stdout:
                if self._stop_event.is_set():
                    break
                if is_relevant_line(line, self._platform):
                    logger.debug(f"[PlatformWatcher] Network event: {line.strip()[:120]}")
                    try:
                        self._on_change()
                    except Exception as e:
                        logger.error(f"[PlatformWatcher] Change handler error: {e}")
        except (OSError, ValueError) as e:
            if not self._stop_event.is_set():
                logger.warning(f"[PlatformWatcher] Monitor stream closed: {e}")

        if not self._stop_event.is_set():
            logger.warning("[PlatformWatcher] Monitor process exited")
