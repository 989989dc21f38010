"""
Tests for TransferService.

Tests:
- Background transfers and their handles
- Recording completed transfers in the history
- Abort, forget and shutdown
- Pruning of finished handles
- Repeated receives on one port
"""

import asyncio
import shutil
import struct
import tempfile
import unittest
from pathlib import Path

from filetransfer.service import TransferService
from filetransfer.storage import init_history
from filetransfer.transfer import (
    FileAccessError, PeerConnectionError, TransferAborted, TransferDirection,
    TransferMetadata, TransferPhase, encode_header,
)

from .support import free_port, send_when_listening, write_file


class ServiceTestCase(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.tmp = Path(tempfile.mkdtemp())
        self.out_dir = self.tmp / 'out'
        self.out_dir.mkdir()
        self.history = await init_history(self.tmp / 'data')
        self.service = TransferService(self.history, chunk_size=1024)

    async def asyncTearDown(self):
        await self.service.close()
        await self.history.close()
        shutil.rmtree(self.tmp, ignore_errors=True)


class TestTransfers(ServiceTestCase):
    """Test cases for starting and tracking transfers."""

    async def test_round_trip_records_both_sides(self):
        source = write_file(self.tmp / 'report.pdf', b'0123456789')

        incoming = await self.service.start_receive(self.out_dir, 0, host='127.0.0.1')
        outgoing = await self.service.start_send(source, '127.0.0.1',
                                                 incoming.endpoint.port)
        await self.service.wait(outgoing.id)
        await self.service.wait(incoming.id)

        self.assertEqual((self.out_dir / 'report.pdf').read_bytes(), b'0123456789')
        self.assertEqual(outgoing.state.phase, TransferPhase.COMPLETED)
        self.assertEqual(incoming.state.phase, TransferPhase.COMPLETED)
        self.assertIsNotNone(outgoing.record)
        self.assertIsNotNone(incoming.record)

        records = await self.history.get_all_transfers()
        self.assertEqual(len(records), 2)
        self.assertEqual({r.direction for r in records},
                         {TransferDirection.SENT, TransferDirection.RECEIVED})
        for record in records:
            self.assertEqual(record.filename, 'report.pdf')
            self.assertEqual(record.filesize, 10)
            self.assertEqual(record.peer_host, '127.0.0.1')

    async def test_list_and_lookup(self):
        first = await self.service.start_receive(self.out_dir, 0, host='127.0.0.1')
        second = await self.service.start_receive(self.out_dir, 0, host='127.0.0.1')

        self.assertEqual(self.service.list_transfers(), [first, second])
        self.assertIs(self.service.get(first.id), first)
        self.assertIsNone(self.service.get('missing'))

        data = first.to_dict()
        self.assertEqual(data['id'], first.id)
        self.assertFalse(data['done'])
        self.assertEqual(data['phase'], 'listening')
        self.assertIsNone(data['record_id'])

    async def test_missing_file_starts_nothing(self):
        with self.assertRaises(FileAccessError):
            await self.service.start_send(self.tmp / 'nope', '127.0.0.1', 9000)
        self.assertEqual(self.service.list_transfers(), [])

    async def test_failed_transfer_not_recorded(self):
        source = write_file(self.tmp / 'a.bin', b'abc')
        handle = await self.service.start_send(source, '127.0.0.1', free_port())

        with self.assertRaises(PeerConnectionError):
            await self.service.wait(handle.id)

        self.assertIsNone(handle.record)
        self.assertEqual(await self.history.count(), 0)

    async def test_works_without_history(self):
        service = TransferService()
        source = write_file(self.tmp / 'a.bin', b'abc')
        try:
            incoming = await service.start_receive(self.out_dir, 0, host='127.0.0.1')
            outgoing = await service.start_send(source, '127.0.0.1',
                                                incoming.endpoint.port)
            await service.wait(outgoing.id)
            await service.wait(incoming.id)
        finally:
            await service.close()

        self.assertIsNone(incoming.record)
        self.assertEqual((self.out_dir / 'a.bin').read_bytes(), b'abc')


class TestControl(ServiceTestCase):
    """Test cases for abort and shutdown."""

    async def test_abort(self):
        handle = await self.service.start_receive(self.out_dir, 0, host='127.0.0.1')

        self.assertTrue(self.service.abort(handle.id))
        with self.assertRaises(TransferAborted):
            await self.service.wait(handle.id)

        self.assertEqual(handle.state.phase, TransferPhase.ABORTED)
        self.assertFalse(self.service.abort(handle.id))
        self.assertFalse(self.service.abort('missing'))

    async def test_wait_unknown_id(self):
        with self.assertRaises(KeyError):
            await self.service.wait('missing')

    async def test_close_aborts_pending(self):
        handle = await self.service.start_receive(self.out_dir, 0, host='127.0.0.1')

        await self.service.close()

        self.assertTrue(handle.done)
        self.assertEqual(handle.state.phase, TransferPhase.ABORTED)

    async def test_forget(self):
        handle = await self.service.start_receive(self.out_dir, 0, host='127.0.0.1')

        self.assertFalse(self.service.forget(handle.id))
        self.assertFalse(self.service.forget('missing'))

        self.service.abort(handle.id)
        with self.assertRaises(TransferAborted):
            await self.service.wait(handle.id)

        self.assertTrue(self.service.forget(handle.id))
        self.assertIsNone(self.service.get(handle.id))
        self.assertFalse(self.service.forget(handle.id))

    async def test_finished_handles_pruned(self):
        service = TransferService(keep_finished=1)
        try:
            finished = []
            for _ in range(2):
                handle = await service.start_receive(self.out_dir, 0, host='127.0.0.1')
                service.abort(handle.id)
                with self.assertRaises(TransferAborted):
                    await service.wait(handle.id)
                finished.append(handle)

            latest = await service.start_receive(self.out_dir, 0, host='127.0.0.1')

            self.assertIsNone(service.get(finished[0].id))
            self.assertIs(service.get(finished[1].id), finished[1])
            self.assertEqual(service.list_transfers(), [finished[1], latest])
        finally:
            await service.close()

    async def test_running_handles_never_pruned(self):
        service = TransferService(keep_finished=0)
        try:
            first = await service.start_receive(self.out_dir, 0, host='127.0.0.1')
            second = await service.start_receive(self.out_dir, 0, host='127.0.0.1')
            self.assertEqual(service.list_transfers(), [first, second])
        finally:
            await service.close()


class TestReceiveForever(ServiceTestCase):
    """Test cases for receiving several files on one port."""

    async def send_raw(self, port: int, payload: bytes):
        """Connect once the loop is listening, write payload and hang up."""
        for _ in range(50):
            try:
                _, writer = await asyncio.open_connection('127.0.0.1', port)
                break
            except OSError:
                await asyncio.sleep(0.05)
        else:
            self.fail("Receiver never started listening")
        writer.write(payload)
        writer.close()
        await writer.wait_closed()

    async def test_receives_count_files(self):
        port = free_port()
        names = []
        loop_task = asyncio.create_task(self.service.receive_forever(
            self.out_dir, port, host='127.0.0.1', count=2,
            on_complete=lambda h: names.append(h.state.filename),
        ))

        await send_when_listening(write_file(self.tmp / 'a.txt', b'first'), port)
        await send_when_listening(write_file(self.tmp / 'b.txt', b'second'), port)
        received = await asyncio.wait_for(loop_task, 10)

        self.assertEqual(received, 2)
        self.assertEqual(names, ['a.txt', 'b.txt'])
        self.assertEqual((self.out_dir / 'b.txt').read_bytes(), b'second')
        self.assertEqual(await self.history.count(), 2)

    async def test_bad_peer_does_not_stop_loop(self):
        port = free_port()
        loop_task = asyncio.create_task(self.service.receive_forever(
            self.out_dir, port, host='127.0.0.1', count=1,
        ))

        await self.send_raw(port, struct.pack('>H', 3) + b'bad')

        await send_when_listening(write_file(self.tmp / 'ok.txt', b'ok'), port)
        received = await asyncio.wait_for(loop_task, 10)

        self.assertEqual(received, 1)
        self.assertEqual(sorted(p.name for p in self.out_dir.iterdir()), ['ok.txt'])

    async def test_uncreatable_name_does_not_stop_loop(self):
        port = free_port()
        (self.out_dir / 'taken').mkdir()
        loop_task = asyncio.create_task(self.service.receive_forever(
            self.out_dir, port, host='127.0.0.1', count=1,
        ))

        for name in ('a' * 300, 'taken'):
            await self.send_raw(port, encode_header(TransferMetadata(name=name, size=3)))

        await send_when_listening(write_file(self.tmp / 'ok.txt', b'ok'), port)
        received = await asyncio.wait_for(loop_task, 10)

        self.assertEqual(received, 1)
        self.assertEqual(sorted(p.name for p in self.out_dir.iterdir()),
                         ['ok.txt', 'taken'])
        self.assertTrue((self.out_dir / 'taken').is_dir())

    async def test_finished_transfers_forgotten(self):
        port = free_port()
        loop_task = asyncio.create_task(self.service.receive_forever(
            self.out_dir, port, host='127.0.0.1', count=3,
        ))

        for name in ('a.txt', 'b.txt', 'c.txt'):
            await send_when_listening(write_file(self.tmp / name, b'x'), port)
        received = await asyncio.wait_for(loop_task, 10)

        self.assertEqual(received, 3)
        self.assertEqual(self.service.list_transfers(), [])
        self.assertEqual(await self.history.count(), 3)

    async def test_abort_stops_loop(self):
        loop_task = asyncio.create_task(self.service.receive_forever(
            self.out_dir, free_port(), host='127.0.0.1',
        ))
        await asyncio.sleep(0.1)

        for handle in self.service.list_transfers():
            self.service.abort(handle.id)

        self.assertEqual(await asyncio.wait_for(loop_task, 5), 0)


if __name__ == '__main__':
    unittest.main()
