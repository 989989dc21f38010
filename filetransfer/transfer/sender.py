"""
File Sender

Pushes one file to a listening receiver: connect, write the metadata
header, stream the content, close.
"""

import asyncio
import logging
import os
import stat
from pathlib import Path
from typing import Optional, Union

import aiofiles

from .errors import (
    FileAccessError, StreamIOError, TransferAborted,
    TransferError,
)
from .progress import (
    ProgressCallback, TransferDirection, TransferPhase, TransferState,
)
from .protocol import (
    DEFAULT_CHUNK_SIZE, TransferMetadata, close_writer, connect_to_peer,
    encode_header,
)

logger = logging.getLogger(__name__)


class FileSender:
    """
    Sends a single file to (host, port).

    The file size is taken when the sender is constructed, so a bad path
    fails before any connection is attempted. An instance handles exactly
    one transfer.
    """

    def __init__(self, file_path: Union[str, Path], host: str, port: int,
                 chunk_size: int = DEFAULT_CHUNK_SIZE,
                 connect_timeout: float = 10.0,
                 progress_callback: Optional[ProgressCallback] = None):
        """
        Args:
            file_path: File to send
            host: Receiver host name or address
            port: Receiver port (1-65535)
            chunk_size: Bytes per write; not part of the wire contract
            connect_timeout: Seconds to wait for the connection
            progress_callback: Called with a state snapshot after each chunk

        Raises:
            FileAccessError: if the file cannot be stat'd or read, or its
                name is not valid UTF-8
            ValueError: on an invalid port or chunk size
        """
        if not 1 <= port <= 65535:
            raise ValueError(f"Port must be in 1-65535, got {port}")
        if chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {chunk_size}")

        self.file_path = Path(file_path)
        self.host = host
        self.port = port
        self.chunk_size = chunk_size
        self.connect_timeout = connect_timeout
        self.progress_callback = progress_callback

        try:
            file_stat = self.file_path.stat()
        except OSError as e:
            raise FileAccessError(f"Cannot access {self.file_path}: {e}") from e

        if not stat.S_ISREG(file_stat.st_mode):
            raise FileAccessError(f"Not a regular file: {self.file_path}")
        if not os.access(self.file_path, os.R_OK):
            raise FileAccessError(f"Permission denied: {self.file_path}")

        # Undecodable bytes in the on-disk name come back as lone surrogates
        try:
            self.file_path.name.encode('utf-8')
        except UnicodeEncodeError as e:
            raise FileAccessError(
                f"File name is not valid UTF-8: {self.file_path.name!r}"
            ) from e

        self.state = TransferState(
            direction=TransferDirection.SENT,
            total_bytes=file_stat.st_size,
            filename=self.file_path.name,
            peer_host=host,
            peer_port=port,
        )

        self._writer: Optional[asyncio.StreamWriter] = None
        self._connect_task: Optional[asyncio.Future] = None
        self._used = False
        self._aborted = False

    # === Status ===

    def is_sending(self) -> bool:
        """Point-in-time check whether bytes remain to be sent."""
        return self.state.active

    def get_progress(self) -> float:
        return self.state.progress

    def get_total_bytes(self) -> int:
        return self.state.total_bytes

    def get_filename(self) -> str:
        return self.state.filename

    def snapshot(self) -> TransferState:
        return self.state.snapshot()

    # === Transfer ===

    def abort(self):
        """
        Abort the transfer from another task.

        Cancels a pending connect, or drops the connection so a pending
        write unblocks even when the peer has stopped reading; `send()`
        then raises TransferAborted.
        """
        self._aborted = True
        if self._connect_task is not None and not self._connect_task.done():
            self._connect_task.cancel()
        if self._writer is not None:
            self._writer.transport.abort()

    async def send(self):
        """
        Send the file.

        Raises:
            PeerConnectionError: if the receiver cannot be reached
            ProtocolError: if the header cannot be framed
            FileAccessError: if the file cannot be opened
            StreamIOError: on a mid-stream failure
            TransferAborted: if `abort()` was called
            RuntimeError: if this sender was already used
        """
        if self._used:
            raise RuntimeError("FileSender instances are single-use")
        self._used = True

        try:
            await self._send()
        except asyncio.CancelledError:
            self.state.finish(TransferPhase.ABORTED, "Transfer cancelled")
            logger.info(f"Send of {self.state.filename} cancelled")
            raise
        except TransferError as e:
            error = e
            if self._aborted and not isinstance(e, TransferAborted):
                error = TransferAborted(f"Send of {self.state.filename} aborted")
            phase = (TransferPhase.ABORTED if isinstance(error, TransferAborted)
                     else TransferPhase.FAILED)
            self.state.finish(phase, str(error))
            logger.error(f"Send of {self.state.filename} failed: {error}")
            self._notify()
            if error is e:
                raise
            raise error from e
        finally:
            if self._writer is not None:
                await close_writer(self._writer)

        self.state.finish(TransferPhase.COMPLETED)
        self._notify()
        logger.info(
            f"Sent {self.state.filename} ({self.state.transferred_bytes:,} bytes) "
            f"to {self.host}:{self.port}"
        )

    async def _send(self):
        total = self.state.total_bytes
        header = encode_header(TransferMetadata(name=self.state.filename, size=total))

        if self._aborted:
            raise TransferAborted("Transfer aborted before connecting")

        self.state.phase = TransferPhase.CONNECTING
        connect = self._connect_task = asyncio.ensure_future(connect_to_peer(
            self.host, self.port, timeout=self.connect_timeout
        ))
        try:
            await asyncio.wait({connect})
        except asyncio.CancelledError:
            connect.cancel()
            raise
        if connect.cancelled():
            raise TransferAborted(
                f"Send of {self.state.filename} aborted while connecting"
            )
        _, self._writer = connect.result()
        logger.debug(f"Connected to {self.host}:{self.port}")

        try:
            async with aiofiles.open(self.file_path, 'rb') as f:
                self.state.phase = TransferPhase.TRANSFERRING
                self._notify()

                await self._write(header)
                await self._stream(f, total)
        except OSError as e:
            raise FileAccessError(f"Cannot read {self.file_path}: {e}") from e

        if self._aborted:
            raise TransferAborted(f"Send of {self.state.filename} aborted")

    async def _stream(self, f, total: int):
        """Send `total` bytes of the open file in chunks."""
        while self.state.transferred_bytes < total:
            if self._aborted:
                raise TransferAborted(f"Send of {self.state.filename} aborted")

            remaining = total - self.state.transferred_bytes
            try:
                chunk = await f.read(min(self.chunk_size, remaining))
            except OSError as e:
                raise StreamIOError(f"Error reading {self.file_path}: {e}") from e

            if not chunk:
                raise StreamIOError(
                    f"{self.file_path} shrank during transfer "
                    f"({self.state.transferred_bytes} of {total} bytes sent)"
                )

            await self._write(chunk)
            self.state.add_bytes(len(chunk))
            self._notify()

    async def _write(self, data: bytes):
        """Write and wait until the transport has taken the bytes."""
        try:
            self._writer.write(data)
            await self._writer.drain()
        except OSError as e:
            raise StreamIOError(
                f"Connection to {self.host}:{self.port} failed: {e}"
            ) from e

    def _notify(self):
        if self.progress_callback:
            self.progress_callback(self.state.snapshot())


async def send_file(file_path: Union[str, Path], host: str, port: int,
                    **kwargs) -> TransferState:
    """
    Send a file and return its final state (convenience function).

    Raises the same errors as FileSender.
    """
    sender = FileSender(file_path, host, port, **kwargs)
    await sender.send()
    return sender.snapshot()
