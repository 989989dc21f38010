"""
Transfer Service - Main Controller

Runs senders and receivers on their own asyncio tasks so callers can
poll progress while the transfer is in flight, and reports completed
transfers to the history collaborator:
- start_send / start_receive: launch one transfer, return a handle
- get / list_transfers: look up running and finished transfers
- abort / wait: control a running transfer
- forget: drop a finished transfer
- receive_forever: accept transfers one after another on one port
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import aiosqlite

from .storage import FileTransferRecord, TransferHistory
from .transfer import (
    FileAccessError, FileReceiver, FileSender, ProtocolError, StreamIOError,
    TransferAborted, TransferDirection, TransferState,
)
from .transfer.protocol import DEFAULT_CHUNK_SIZE

logger = logging.getLogger(__name__)

Endpoint = Union[FileSender, FileReceiver]


@dataclass
class TransferHandle:
    """A transfer started by the service."""
    id: str
    endpoint: Endpoint
    task: asyncio.Task
    record: Optional[FileTransferRecord] = None

    @property
    def state(self) -> TransferState:
        return self.endpoint.state

    @property
    def direction(self) -> TransferDirection:
        return self.endpoint.state.direction

    @property
    def done(self) -> bool:
        return self.task.done()

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = {'id': self.id, 'done': self.done}
        data.update(self.endpoint.snapshot().to_dict())
        data['record_id'] = self.record.id if self.record else None
        return data


# Called with the handle of each completed transfer in receive_forever()
CompletionCallback = Callable[[TransferHandle], None]


class TransferService:
    """
    Starts transfers and logs the ones that complete.

    The history is optional and passed in by the caller; without it
    transfers simply aren't recorded. Finished handles are kept for
    status queries until `forget()` drops them, or until more than
    `keep_finished` have piled up, oldest first.
    """

    def __init__(self, history: Optional[TransferHistory] = None,
                 chunk_size: int = DEFAULT_CHUNK_SIZE,
                 connect_timeout: float = 10.0,
                 keep_finished: int = 100):
        self.history = history
        self.chunk_size = chunk_size
        self.connect_timeout = connect_timeout
        self.keep_finished = keep_finished
        self._transfers: Dict[str, TransferHandle] = {}

    # === Starting transfers ===

    async def start_send(self, file_path: Union[str, Path], host: str,
                         port: int) -> TransferHandle:
        """
        Start sending a file.

        Raises:
            FileAccessError: if the file cannot be read (nothing is started)
            ValueError: on an invalid port
        """
        sender = FileSender(
            file_path, host, port,
            chunk_size=self.chunk_size,
            connect_timeout=self.connect_timeout,
        )
        logger.info(f"Sending {sender.get_filename()} "
                    f"({sender.get_total_bytes():,} bytes) to {host}:{port}")
        return self._launch(sender, sender.send())

    async def start_receive(self, save_dir: Union[str, Path], port: int,
                            host: str = '0.0.0.0') -> TransferHandle:
        """
        Start listening for one file.

        The receiver is bound before this returns, so a sender may
        connect as soon as the handle is available.

        Raises:
            FileAccessError: if save_dir is not a writable directory
            BindError: if the port is unavailable (nothing is started)
        """
        receiver = FileReceiver(save_dir, port, host=host, chunk_size=self.chunk_size)
        await receiver.bind()
        return self._launch(receiver, receiver.receive())

    def _launch(self, endpoint: Endpoint, transfer) -> TransferHandle:
        transfer_id = uuid.uuid4().hex
        task = asyncio.create_task(self._run(transfer_id, endpoint, transfer))
        handle = TransferHandle(id=transfer_id, endpoint=endpoint, task=task)
        self._prune()
        self._transfers[transfer_id] = handle
        task.add_done_callback(self._on_task_done)
        return handle

    def _prune(self):
        finished = [tid for tid, h in self._transfers.items() if h.done]
        for transfer_id in finished[:max(0, len(finished) - self.keep_finished)]:
            del self._transfers[transfer_id]

    async def _run(self, transfer_id: str, endpoint: Endpoint, transfer):
        await transfer
        record = await self._record(endpoint)
        handle = self._transfers.get(transfer_id)
        if handle is not None:
            handle.record = record

    async def _record(self, endpoint: Endpoint) -> Optional[FileTransferRecord]:
        """Log a completed transfer to the history, if there is one."""
        if self.history is None:
            return None

        state = endpoint.state
        try:
            return await self.history.record_transfer(
                filename=state.filename,
                filesize=state.total_bytes,
                direction=state.direction,
                peer_host=state.peer_host or '',
                peer_port=state.peer_port or 0,
            )
        except (aiosqlite.Error, RuntimeError) as e:
            logger.error(f"Failed to record transfer of {state.filename}: {e}")
            return None

    def _on_task_done(self, task: asyncio.Task):
        # Errors are re-raised by wait(); retrieve them here so unawaited
        # tasks don't warn
        if not task.cancelled():
            task.exception()

    # === Controlling transfers ===

    def get(self, transfer_id: str) -> Optional[TransferHandle]:
        return self._transfers.get(transfer_id)

    def list_transfers(self) -> List[TransferHandle]:
        """All transfers started by this service, oldest first."""
        return list(self._transfers.values())

    def abort(self, transfer_id: str) -> bool:
        """Abort a running transfer. Returns False if unknown or finished."""
        handle = self._transfers.get(transfer_id)
        if handle is None or handle.done:
            return False
        logger.info(f"Aborting transfer {transfer_id}")
        handle.endpoint.abort()
        return True

    def forget(self, transfer_id: str) -> bool:
        """Drop a finished transfer. Returns False if unknown or still running."""
        handle = self._transfers.get(transfer_id)
        if handle is None or not handle.done:
            return False
        del self._transfers[transfer_id]
        return True

    async def wait(self, transfer_id: str) -> TransferHandle:
        """
        Wait for a transfer to finish.

        Raises:
            KeyError: if the id is unknown
            TransferError: whatever ended the transfer
        """
        handle = self._transfers[transfer_id]
        await handle.task
        return handle

    async def receive_forever(self, save_dir: Union[str, Path], port: int,
                              host: str = '0.0.0.0',
                              count: Optional[int] = None,
                              on_complete: Optional[CompletionCallback] = None) -> int:
        """
        Receive files one after another, a fresh receiver per transfer.

        Failures after a peer connected (bad header, a name that cannot be
        created, dropped connection) are logged and the next transfer is
        awaited. Local failures (port, directory) propagate from binding.
        Each handle is forgotten once its transfer has finished.

        Args:
            count: Stop after this many successful transfers (None = forever)
            on_complete: Called with each completed handle

        Returns:
            Number of files received
        """
        received = 0
        while count is None or received < count:
            handle = await self.start_receive(save_dir, port, host=host)
            try:
                await self.wait(handle.id)
            except (ProtocolError, StreamIOError, FileAccessError) as e:
                logger.warning(f"Transfer from {handle.state.peer_host} failed: {e}")
                continue
            except TransferAborted:
                break
            finally:
                self.forget(handle.id)

            received += 1
            if on_complete:
                on_complete(handle)
        return received

    async def close(self):
        """Abort unfinished transfers and wait for them to release resources."""
        pending = [h for h in self._transfers.values() if not h.done]
        for handle in pending:
            handle.endpoint.abort()
        if pending:
            await asyncio.gather(*(h.task for h in pending), return_exceptions=True)
        logger.debug(f"Transfer service closed ({len(pending)} aborted)")
