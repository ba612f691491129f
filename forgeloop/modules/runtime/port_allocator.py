"""
Port Allocator
Finds free TCP ports for dev servers by probing bind/listen.

The probe is not atomic: a port reported free can be taken before the dev
server binds it. Callers start at most one project per name at a time.
"""

import asyncio
import os
import signal
import socket
import sys
from typing import List, Optional

from forgeloop.core.config import settings
from forgeloop.core.exceptions import NoPortAvailableError
from forgeloop.core.logging_config import logger


def _can_bind(port: int, host: str) -> bool:
    """Try to open and immediately close a listener on host:port"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host, port))
        sock.listen(1)
        return True
    except OSError:
        return False
    finally:
        sock.close()


async def find_available_port(
    base: Optional[int] = None,
    max_attempts: Optional[int] = None,
    host: str = ""
) -> int:
    """
    Find the first bindable port in [base, base + max_attempts).

    Args:
        base: First port to try (defaults to settings.BASE_PORT)
        max_attempts: How many consecutive ports to probe
        host: Interface to bind ("" means all interfaces)

    Returns:
        A port that accepted a listener at probe time

    Raises:
        NoPortAvailableError: every candidate was taken
    """
    base = settings.BASE_PORT if base is None else base
    max_attempts = settings.PORT_MAX_ATTEMPTS if max_attempts is None else max_attempts

    for port in range(base, base + max_attempts):
        if _can_bind(port, host):
            logger.debug(f"[PortAllocator] Port {port} is available")
            return port
        logger.debug(f"[PortAllocator] Port {port} in use, trying next")
        # Let other tasks run between probes
        await asyncio.sleep(0)

    raise NoPortAvailableError(base, max_attempts)


async def is_port_in_use(port: int, host: Optional[str] = None) -> bool:
    """A port counts as in use when a listener cannot be bound on it"""
    host = settings.PORT_PROBE_HOST if host is None else host
    return not _can_bind(port, host)


async def _pids_on_port(port: int) -> List[int]:
    """Look up process ids listening on a port with the platform's tool"""
    if sys.platform == "win32":
        command = f"netstat -ano | findstr :{port}"
    else:
        command = f"lsof -ti tcp:{port}"

    try:
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL
        )
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=10)
    except (OSError, asyncio.TimeoutError) as e:
        logger.debug(f"[PortAllocator] Could not look up pids on port {port}: {e}")
        return []

    pids = set()
    for line in stdout.decode("utf-8", errors="replace").splitlines():
        parts = line.split()
        if not parts:
            continue
        # netstat puts the pid in the last column, lsof prints bare pids
        candidate = parts[-1]
        if candidate.isdigit() and int(candidate) > 0:
            pids.add(int(candidate))
    return sorted(pids)


async def kill_process_on_port(port: int) -> bool:
    """
    Best-effort termination of whatever process listens on a port.

    Used when a project is only known from the durable store and its process
    handle has been lost.

    Returns:
        True if at least one process was signalled
    """
    pids = await _pids_on_port(port)
    if not pids:
        logger.info(f"[PortAllocator] No process found on port {port}")
        return False

    killed = False
    for pid in pids:
        if pid == os.getpid():
            continue
        try:
            os.kill(pid, signal.SIGTERM)
            killed = True
            logger.info(f"[PortAllocator] Sent SIGTERM to pid {pid} on port {port}")
        except (ProcessLookupError, PermissionError) as e:
            logger.warning(f"[PortAllocator] Could not kill pid {pid}: {e}")
    return killed
