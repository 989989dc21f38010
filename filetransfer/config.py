"""
Configuration Management

Handles loading configuration from environment variables and config files.
The transfer classes take plain arguments; this is only read by the
CLI and the REST API when they build them.
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional
import json

from dotenv import load_dotenv


@dataclass
class Config:
    """
    File transfer configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (FT_*)
    2. Config file (config.json)
    3. Default values
    """
    # Sending
    host: str = 'localhost'
    port: int = 8080

    # Receiving
    listen_host: str = '0.0.0.0'
    listen_port: int = 8080
    save_dir: Path = field(default_factory=lambda: Path('.'))

    # Storage
    data_dir: Path = field(default_factory=lambda: Path('./filetransfer_data'))

    # Performance
    chunk_size: int = 8192

    # Timeouts (seconds)
    connect_timeout: float = 10.0

    # Presentation
    poll_interval: float = 0.1
    api_host: str = '127.0.0.1'
    api_port: int = 8000

    # Logging
    log_level: str = 'INFO'

    def __post_init__(self):
        self.save_dir = Path(self.save_dir)
        self.data_dir = Path(self.data_dir)

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        # Sending
        config.host = os.getenv('FT_HOST', config.host)
        config.port = int(os.getenv('FT_PORT', config.port))

        # Receiving
        config.listen_host = os.getenv('FT_LISTEN_HOST', config.listen_host)
        config.listen_port = int(os.getenv('FT_LISTEN_PORT', config.listen_port))
        save_dir = os.getenv('FT_SAVE_DIR')
        if save_dir:
            config.save_dir = Path(save_dir)

        # Storage
        data_dir = os.getenv('FT_DATA_DIR')
        if data_dir:
            config.data_dir = Path(data_dir)

        # Performance
        config.chunk_size = int(os.getenv('FT_CHUNK_SIZE', config.chunk_size))
        config.connect_timeout = float(
            os.getenv('FT_CONNECT_TIMEOUT', config.connect_timeout)
        )

        # Presentation
        config.poll_interval = float(os.getenv('FT_POLL_INTERVAL', config.poll_interval))
        config.api_host = os.getenv('FT_API_HOST', config.api_host)
        config.api_port = int(os.getenv('FT_API_PORT', config.api_port))

        # Logging
        config.log_level = os.getenv('FT_LOG_LEVEL', config.log_level)

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()

        # Sending
        config.host = data.get('host', config.host)
        config.port = data.get('port', config.port)

        # Receiving
        config.listen_host = data.get('listen_host', config.listen_host)
        config.listen_port = data.get('listen_port', config.listen_port)
        if 'save_dir' in data:
            config.save_dir = Path(data['save_dir'])

        # Storage
        if 'data_dir' in data:
            config.data_dir = Path(data['data_dir'])

        # Performance
        config.chunk_size = data.get('chunk_size', config.chunk_size)
        config.connect_timeout = data.get('connect_timeout', config.connect_timeout)

        # Presentation
        config.poll_interval = data.get('poll_interval', config.poll_interval)
        config.api_host = data.get('api_host', config.api_host)
        config.api_port = data.get('api_port', config.api_port)

        # Logging
        config.log_level = data.get('log_level', config.log_level)

        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'host': self.host,
            'port': self.port,
            'listen_host': self.listen_host,
            'listen_port': self.listen_port,
            'save_dir': str(self.save_dir),
            'data_dir': str(self.data_dir),
            'chunk_size': self.chunk_size,
            'connect_timeout': self.connect_timeout,
            'poll_interval': self.poll_interval,
            'api_host': self.api_host,
            'api_port': self.api_port,
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def validate(self):
        """
        Check value ranges.

        Raises:
            ValueError: naming the first invalid setting
        """
        for name in ('port', 'listen_port', 'api_port'):
            value = getattr(self, name)
            if not 1 <= value <= 65535:
                raise ValueError(f"{name} must be in 1-65535, got {value}")
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.connect_timeout <= 0:
            raise ValueError(
                f"connect_timeout must be positive, got {self.connect_timeout}"
            )
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {self.poll_interval}")


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    # Start with defaults
    config = Config()

    # Load from file if provided
    if config_path and Path(config_path).exists():
        config = Config.from_file(config_path)

    # Override with environment variables
    env_config = Config.from_env()

    # Merge (env takes precedence for non-default values)
    defaults = Config()
    for key in env_config.to_dict():
        env_val = getattr(env_config, key)
        default_val = getattr(defaults, key)
        if env_val != default_val:
            setattr(config, key, env_val)

    config.validate()
    return config


# Example config file template
EXAMPLE_CONFIG = """
{
  "host": "192.168.1.20",
  "port": 8080,
  "listen_host": "0.0.0.0",
  "listen_port": 8080,
  "save_dir": "./received",
  "data_dir": "./filetransfer_data",
  "chunk_size": 8192,
  "connect_timeout": 10.0,
  "poll_interval": 0.1,
  "api_host": "127.0.0.1",
  "api_port": 8000,
  "log_level": "INFO"
}
"""


if __name__ == "__main__":
    # Print example config
    print("Example configuration file (config.json):")
    print(EXAMPLE_CONFIG)
