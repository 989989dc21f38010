"""
Unit tests for configuration loading.
"""

import json
import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from filetransfer.config import Config, load_config


class TestConfig(unittest.TestCase):
    """Test cases for Config and load_config."""

    def setUp(self):
        self.tmp = Path(tempfile.mkdtemp())
        env = {k: v for k, v in os.environ.items() if not k.startswith('FT_')}
        self.env = patch.dict(os.environ, env, clear=True)
        self.env.start()

    def tearDown(self):
        self.env.stop()
        shutil.rmtree(self.tmp, ignore_errors=True)

    def write_config(self, data: dict) -> Path:
        path = self.tmp / 'config.json'
        path.write_text(json.dumps(data))
        return path

    def test_defaults_are_valid(self):
        config = Config()
        config.validate()
        self.assertEqual(config.chunk_size, 8192)
        self.assertEqual(config.poll_interval, 0.1)
        self.assertIsInstance(config.save_dir, Path)

    def test_from_env(self):
        os.environ.update({
            'FT_HOST': '10.0.0.5',
            'FT_PORT': '9100',
            'FT_SAVE_DIR': '/srv/incoming',
            'FT_CHUNK_SIZE': '65536',
            'FT_CONNECT_TIMEOUT': '2.5',
            'FT_LOG_LEVEL': 'DEBUG',
        })
        config = Config.from_env()

        self.assertEqual(config.host, '10.0.0.5')
        self.assertEqual(config.port, 9100)
        self.assertEqual(config.save_dir, Path('/srv/incoming'))
        self.assertEqual(config.chunk_size, 65536)
        self.assertEqual(config.connect_timeout, 2.5)
        self.assertEqual(config.log_level, 'DEBUG')

    def test_from_file(self):
        path = self.write_config({'listen_port': 7000, 'data_dir': 'state',
                                  'api_port': 8100})
        config = Config.from_file(path)

        self.assertEqual(config.listen_port, 7000)
        self.assertEqual(config.data_dir, Path('state'))
        self.assertEqual(config.api_port, 8100)
        self.assertEqual(config.host, 'localhost')

    def test_missing_file_gives_defaults(self):
        self.assertEqual(Config.from_file(self.tmp / 'nope.json').to_dict(),
                         Config().to_dict())

    def test_save_then_load(self):
        path = self.tmp / 'saved.json'
        Config(host='example.org', chunk_size=1024).save(path)

        config = Config.from_file(path)
        self.assertEqual(config.host, 'example.org')
        self.assertEqual(config.chunk_size, 1024)

    def test_env_overrides_file(self):
        path = self.write_config({'port': 7000, 'host': 'filehost'})
        os.environ['FT_PORT'] = '7001'

        config = load_config(path)

        self.assertEqual(config.port, 7001)
        self.assertEqual(config.host, 'filehost')

    def test_load_config_validates(self):
        path = self.write_config({'chunk_size': 0})
        with self.assertRaises(ValueError):
            load_config(path)

    def test_validate_rejects_bad_values(self):
        for kwargs in ({'port': 0}, {'listen_port': 70000}, {'chunk_size': -1},
                       {'connect_timeout': 0}, {'poll_interval': 0}):
            with self.subTest(**kwargs):
                with self.assertRaises(ValueError):
                    Config(**kwargs).validate()


if __name__ == '__main__':
    unittest.main()
