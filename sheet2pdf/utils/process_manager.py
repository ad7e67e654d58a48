import threading
import subprocess
from typing import List
from .logger import logger


class ProcessRegistry:
    """
    Global registry of live converter subprocesses so they can be
    terminated on interrupt or application exit.
    """
    _processes: List[subprocess.Popen] = []
    _lock = threading.Lock()

    @classmethod
    def register(cls, process: subprocess.Popen) -> None:
        with cls._lock:
            if process not in cls._processes:
                cls._processes.append(process)
                logger.debug(f"Registered converter process pid={process.pid}")

    @classmethod
    def unregister(cls, process: subprocess.Popen) -> None:
        with cls._lock:
            if process in cls._processes:
                cls._processes.remove(process)
                logger.debug(f"Unregistered converter process pid={process.pid}")

    @classmethod
    def active_count(cls) -> int:
        with cls._lock:
            return len(cls._processes)

    @classmethod
    def kill_all(cls, grace_seconds: float = 5) -> int:
        """
        Terminate every registered process, escalating to kill when it
        does not exit within `grace_seconds`. Safe to call from atexit.

        Returns:
            Number of processes that were still running.
        """
        stopped = 0
        with cls._lock:
            if not cls._processes:
                return 0

            logger.info(f"Cleaning up {len(cls._processes)} active converter processes...")
            for process in list(cls._processes):
                if process.poll() is not None:
                    continue
                stopped += 1
                try:
                    process.terminate()
                    process.wait(timeout=grace_seconds)
                except subprocess.TimeoutExpired:
                    logger.warning(f"Converter pid={process.pid} ignored terminate, killing")
                    process.kill()
                except OSError as e:
                    logger.warning(f"Failed to stop converter pid={process.pid}: {e}")

            cls._processes.clear()
        return stopped
