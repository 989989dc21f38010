"""
Tests for the command-line interface.
"""

import asyncio
import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from click.testing import CliRunner
from rich.console import Console

from filetransfer.cli import cli, format_size
from filetransfer.storage import init_history

from .support import free_port, write_file


async def seed_history(data_dir: Path):
    history = await init_history(data_dir)
    try:
        await history.record_sent('report.pdf', 10, '127.0.0.1', 9000)
        await history.record_received('photo.jpg', 2048, '10.0.0.7', 41000)
    finally:
        await history.close()


class TestCli(unittest.TestCase):
    """Test cases for the filetransfer command."""

    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())
        self.data_dir = self.tmp / 'data'
        self.runner = CliRunner()
        env = {k: v for k, v in os.environ.items() if not k.startswith('FT_')}
        self.env = patch.dict(os.environ, env, clear=True)
        self.env.start()
        # Wide enough that table cells are never truncated
        self.console = patch('filetransfer.cli.console', Console(width=200))
        self.console.start()

    def tearDown(self):
        self.console.stop()
        self.env.stop()
        shutil.rmtree(self.tmp, ignore_errors=True)

    def invoke(self, *args):
        return self.runner.invoke(cli, ['--data-dir', str(self.data_dir), *args],
                                  obj={})

    def test_history_empty(self):
        result = self.invoke('history')

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn('No transfers recorded', result.output)

    def test_history_lists_records(self):
        asyncio.run(seed_history(self.data_dir))

        result = self.invoke('history')

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn('report.pdf', result.output)
        self.assertIn('photo.jpg', result.output)

    def test_history_direction_filter(self):
        asyncio.run(seed_history(self.data_dir))

        result = self.invoke('history', '--direction', 'received')

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn('photo.jpg', result.output)
        self.assertNotIn('report.pdf', result.output)

    def test_history_rejects_unknown_direction(self):
        result = self.invoke('history', '--direction', 'sideways')
        self.assertEqual(result.exit_code, 2)

    def test_send_to_closed_port_fails(self):
        source = write_file(self.tmp / 'a.bin', b'abc')

        result = self.invoke('send', str(source), '--host', '127.0.0.1',
                             '--port', str(free_port()))

        self.assertEqual(result.exit_code, 1, result.output)
        self.assertIn('Send failed', result.output)

    def test_send_missing_file_is_usage_error(self):
        result = self.invoke('send', str(self.tmp / 'nope.bin'), '--port', '9000')
        self.assertEqual(result.exit_code, 2)

    def test_invalid_config_file(self):
        config = self.tmp / 'config.json'
        config.write_text('{"port": 0}')

        result = self.runner.invoke(cli, ['--config', str(config), 'history'], obj={})

        self.assertEqual(result.exit_code, 2)


class TestFormatSize(unittest.TestCase):

    def test_units(self):
        self.assertEqual(format_size(10), '10.0 B')
        self.assertEqual(format_size(2048), '2.0 KB')
        self.assertEqual(format_size(5 * 1024 ** 3), '5.0 GB')


if __name__ == '__main__':
    unittest.main()
