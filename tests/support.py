"""Shared helpers for the test suite."""

import asyncio
import os
import socket
from pathlib import Path

from filetransfer.transfer import FileSender, PeerConnectionError


def free_port() -> int:
    """A port that nothing was listening on a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


def write_file(path: Path, data: bytes) -> Path:
    path.write_bytes(data)
    return path


def open_fds_under(directory: Path) -> list:
    """Paths under `directory` this process still has open (Linux only)."""
    prefix = str(Path(directory).resolve())
    found = []
    for fd in os.listdir('/proc/self/fd'):
        try:
            target = os.readlink(f'/proc/self/fd/{fd}')
        except OSError:
            continue
        if target.startswith(prefix):
            found.append(target)
    return found


async def send_when_listening(path: Path, port: int, attempts: int = 50, **kwargs):
    """Send once a receiver is accepting on `port`."""
    for _ in range(attempts):
        sender = FileSender(path, '127.0.0.1', port, **kwargs)
        try:
            await sender.send()
            return sender
        except PeerConnectionError:
            await asyncio.sleep(0.05)
    raise AssertionError(f"Nothing listening on port {port}")


async def wait_for(predicate, timeout: float = 5.0):
    """Poll until predicate() is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Timed out waiting for condition")
        await asyncio.sleep(0.01)
