"""
File Receiver

Design Decision: Accepting Connections
======================================

Options Considered:
1. Long-lived server handling every incoming connection
   - Natural for a daemon
   - Transfers share the listener and its state

2. Single-use listener per transfer
   - Receiver owns exactly one listening socket, one connection, one file
   - Nothing shared between transfers
   - A new receiver has to be built for the next file

Decision: Single-use listener
- Listen, accept the first connection, stop listening
- Any connection arriving after the first is closed immediately
- Repeated transfers are layered on top (see TransferService.receive_forever)

Receive Flow:
1. Bind and listen (BindError if the port is taken)
2. Accept one connection, close the listener
3. Read and validate the metadata header
4. Copy exactly `size` bytes into save_dir/name
5. Close file, connection and listener on every exit path
"""

import asyncio
import errno
import logging
import os
from pathlib import Path
from typing import Optional, Tuple, Union

import aiofiles
import aiofiles.os

from .errors import (
    BindError, FileAccessError, ProtocolError, StreamIOError, TransferAborted,
    TransferError,
)
from .progress import (
    ProgressCallback, TransferDirection, TransferPhase, TransferState,
)
from .protocol import (
    DEFAULT_CHUNK_SIZE, MAX_HEADER_LENGTH, close_writer, read_header,
    validate_filename,
)

logger = logging.getLogger(__name__)

Connection = Tuple[asyncio.StreamReader, asyncio.StreamWriter]

# open() failures caused by the name the peer chose rather than by save_dir
NAME_ERRNOS = frozenset({errno.ENAMETOOLONG, errno.EISDIR, errno.EINVAL})


class FileReceiver:
    """
    Receives a single file on a listening port.

    Usage:
        receiver = FileReceiver('/tmp/out', 9000)
        await receiver.bind()          # optional, receive() binds too
        path = await receiver.receive()
    """

    def __init__(self, save_dir: Union[str, Path], port: int,
                 host: str = '0.0.0.0',
                 chunk_size: int = DEFAULT_CHUNK_SIZE,
                 max_header_length: int = MAX_HEADER_LENGTH,
                 progress_callback: Optional[ProgressCallback] = None):
        """
        Args:
            save_dir: Directory the received file is written to
            port: Port to listen on; 0 picks a free port
            host: Address to bind
            chunk_size: Bytes per read
            max_header_length: Largest metadata header accepted
            progress_callback: Called with a state snapshot after each chunk
        """
        if not 0 <= port <= 65535:
            raise ValueError(f"Port must be in 0-65535, got {port}")
        if chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {chunk_size}")

        self.save_dir = Path(save_dir)
        self.host = host
        self.chunk_size = chunk_size
        self.max_header_length = min(max_header_length, MAX_HEADER_LENGTH)
        self.progress_callback = progress_callback

        self.state = TransferState(direction=TransferDirection.RECEIVED)
        self.output_path: Optional[Path] = None

        self._port = port
        self._server: Optional[asyncio.AbstractServer] = None
        self._connection: Optional[asyncio.Future] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._used = False
        self._aborted = False

    @property
    def port(self) -> int:
        """Listening port; the real one once bound."""
        if self._server is not None and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return self._port

    @property
    def is_bound(self) -> bool:
        return self._server is not None

    # === Status ===

    def is_receiving(self) -> bool:
        """
        Point-in-time check whether bytes are still expected.

        False until the header has arrived, since the total is unknown (-1).
        """
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

    async def bind(self):
        """
        Start listening.

        Raises:
            FileAccessError: if save_dir is not a writable directory
            BindError: if the port is unavailable
        """
        if self._server is not None:
            return
        if self._aborted:
            raise TransferAborted("Receiver aborted before binding")

        # Checked before accepting so a later open failure is down to the name
        if not self.save_dir.is_dir() or not os.access(self.save_dir, os.W_OK):
            error = FileAccessError(f"Cannot write to directory {self.save_dir}")
            self.state.finish(TransferPhase.FAILED, str(error))
            logger.error(str(error))
            raise error

        self._connection = asyncio.get_running_loop().create_future()
        try:
            self._server = await asyncio.start_server(
                self._handle_connection,
                self.host,
                self._port
            )
        except OSError as e:
            error = BindError(f"Cannot listen on {self.host}:{self._port}: {e}")
            self.state.finish(TransferPhase.FAILED, str(error))
            logger.error(str(error))
            raise error from e

        self.state.phase = TransferPhase.LISTENING
        logger.info(f"Waiting for a file on {self.host}:{self.port}")

    def abort(self):
        """
        Abort from another task.

        Stops listening and closes the connection; `receive()` then
        raises TransferAborted.
        """
        self._aborted = True
        if self._connection is not None and not self._connection.done():
            self._connection.set_exception(TransferAborted("Receiver aborted"))
        if self._server is not None:
            self._server.close()
        if self._writer is not None:
            self._writer.transport.abort()

    async def receive(self) -> Path:
        """
        Receive one file.

        Returns:
            Path of the written file

        Raises:
            BindError: if the port is unavailable
            ProtocolError: on a malformed header, or a file name that is
                unsafe or cannot be created in save_dir
            FileAccessError: if save_dir or the destination is not writable
            StreamIOError: on a mid-stream failure or early end of stream
            TransferAborted: if `abort()` was called
            RuntimeError: if this receiver was already used
        """
        if self._used:
            raise RuntimeError("FileReceiver instances are single-use")
        self._used = True

        try:
            await self.bind()
            await self._receive()
        except asyncio.CancelledError:
            self.state.finish(TransferPhase.ABORTED, "Transfer cancelled")
            await self._discard_partial()
            logger.info("Receive cancelled")
            raise
        except TransferError as e:
            if self.state.phase.is_terminal:
                # bind() already recorded the failure
                raise
            error = e
            if self._aborted and not isinstance(e, TransferAborted):
                error = TransferAborted("Receiver aborted")
            phase = (TransferPhase.ABORTED if isinstance(error, TransferAborted)
                     else TransferPhase.FAILED)
            self.state.finish(phase, str(error))
            await self._discard_partial()
            logger.error(f"Receive failed: {error}")
            self._notify()
            if error is e:
                raise
            raise error from e
        finally:
            await self._release()

        self.state.finish(TransferPhase.COMPLETED)
        self._notify()
        logger.info(
            f"Received {self.state.filename} ({self.state.transferred_bytes:,} bytes) "
            f"from {self.state.peer_host}:{self.state.peer_port}"
        )
        return self.output_path

    async def _handle_connection(self, reader: asyncio.StreamReader,
                                 writer: asyncio.StreamWriter):
        """Hand the first connection to receive(), refuse the rest."""
        if self._connection is None or self._connection.done():
            peer = writer.get_extra_info('peername')
            logger.warning(f"Refusing extra connection from {peer}")
            writer.close()
            return

        # Single-use listener
        if self._server is not None:
            self._server.close()
        self._connection.set_result((reader, writer))

    async def _receive(self):
        reader, self._writer = await self._connection
        if self._aborted:
            raise TransferAborted("Receiver aborted")

        peer = self._writer.get_extra_info('peername')
        if peer:
            self.state.peer_host, self.state.peer_port = peer[0], peer[1]
        logger.debug(f"Accepted connection from {peer}")

        try:
            metadata = await read_header(reader, self.max_header_length)
        except OSError as e:
            raise StreamIOError(f"Error reading metadata header: {e}") from e

        name = validate_filename(metadata.name)
        self.state.filename = name
        self.state.total_bytes = metadata.size
        self.state.phase = TransferPhase.TRANSFERRING
        self._notify()

        path = self.save_dir / name
        try:
            async with aiofiles.open(path, 'wb') as f:
                self.output_path = path
                await self._copy(reader, f, metadata.size)
        except ValueError as e:
            raise ProtocolError(f"Cannot create a file named {name!r}: {e}") from e
        except OSError as e:
            if e.errno in NAME_ERRNOS:
                raise ProtocolError(f"Cannot create a file named {name!r}: {e}") from e
            raise FileAccessError(f"Cannot write {path}: {e}") from e

        if self._aborted:
            raise TransferAborted("Receiver aborted")

    async def _copy(self, reader: asyncio.StreamReader, f, size: int):
        """Copy exactly `size` bytes from the connection into an open file."""
        while self.state.transferred_bytes < size:
            if self._aborted:
                raise TransferAborted("Receiver aborted")

            remaining = size - self.state.transferred_bytes
            try:
                chunk = await reader.read(min(self.chunk_size, remaining))
            except OSError as e:
                raise StreamIOError(f"Error reading from peer: {e}") from e

            if not chunk:
                raise StreamIOError(
                    f"Connection closed after {self.state.transferred_bytes} "
                    f"of {size} bytes"
                )

            try:
                await f.write(chunk)
            except OSError as e:
                raise StreamIOError(f"Error writing {self.output_path}: {e}") from e

            self.state.add_bytes(len(chunk))
            self._notify()

    async def _release(self):
        """Close connection and listener."""
        if self._writer is not None:
            await close_writer(self._writer)
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    async def _discard_partial(self):
        """Remove a partially written file."""
        if self.output_path is None:
            return
        try:
            await aiofiles.os.remove(self.output_path)
            logger.debug(f"Removed partial file {self.output_path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove partial file {self.output_path}: {e}")
        self.output_path = None

    def _notify(self):
        if self.progress_callback:
            self.progress_callback(self.state.snapshot())


async def receive_file(save_dir: Union[str, Path], port: int,
                       **kwargs) -> Tuple[Path, TransferState]:
    """
    Receive one file and return its path and final state (convenience function).

    Raises the same errors as FileReceiver.
    """
    receiver = FileReceiver(save_dir, port, **kwargs)
    path = await receiver.receive()
    return path, receiver.snapshot()
