"""
Configuration Management Module
Loads and validates configuration from config.yaml, with environment overrides
"""

import os
import yaml
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class CameraConfig:
    """Camera defaults and probe target"""
    model: str = "DS-TCG406-E"
    http_host: str = ""
    rtsp_url: str = ""
    probe_timeout_seconds: float = 5.0


@dataclass
class DatabaseConfig:
    """Database configuration"""
    host: str = "localhost"
    port: int = 5432
    user: str = "anpr"
    password: str = "anpr"
    name: str = "anpr"


@dataclass
class ApiConfig:
    """HTTP API limits"""
    max_upload_size_mb: int = 10


@dataclass
class RetentionConfig:
    """Event retention"""
    event_retention_days: int = 90


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: Optional[str] = None
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ConfigManager:
    """Manages service configuration"""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, config_path: Optional[str] = None, apply_env: bool = True):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
            apply_env: Apply environment variable overrides after loading
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.camera: CameraConfig = CameraConfig()
        self.database: DatabaseConfig = DatabaseConfig()
        self.api: ApiConfig = ApiConfig()
        self.retention: RetentionConfig = RetentionConfig()
        self.logging: LoggingConfig = LoggingConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")

        if apply_env:
            self._apply_env_overrides()
        self._validate()

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        env_path = os.getenv("CONFIG_PATH")
        if env_path:
            return Path(env_path)

        search_paths = [
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.cwd() / "python" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        self._parse_camera()
        self._parse_database()
        self._parse_api()
        self._parse_retention()
        self._parse_logging()

    def _section(self, name: str) -> Dict[str, Any]:
        cfg = self._raw_config.get(name) or {}
        if not isinstance(cfg, dict):
            raise ConfigurationError(f"Config section '{name}' must be a mapping")
        return cfg

    def _parse_camera(self) -> None:
        """Parse camera configuration"""
        cfg = self._section('camera')
        self.camera = CameraConfig(
            model=cfg.get('model', self.camera.model),
            http_host=cfg.get('http_host', self.camera.http_host) or "",
            rtsp_url=cfg.get('rtsp_url', self.camera.rtsp_url) or "",
            probe_timeout_seconds=float(cfg.get('probe_timeout_seconds', 5.0))
        )

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._section('database')
        self.database = DatabaseConfig(
            host=cfg.get('host', self.database.host),
            port=cfg.get('port', self.database.port),
            user=cfg.get('user', self.database.user),
            password=cfg.get('password', self.database.password),
            name=cfg.get('name', self.database.name)
        )

    def _parse_api(self) -> None:
        """Parse API configuration"""
        cfg = self._section('api')
        self.api = ApiConfig(
            max_upload_size_mb=cfg.get('max_upload_size_mb', 10)
        )

    def _parse_retention(self) -> None:
        """Parse retention configuration"""
        cfg = self._section('retention')
        self.retention = RetentionConfig(
            event_retention_days=cfg.get('event_retention_days', 90)
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._section('logging')
        self.logging = LoggingConfig(
            level=str(cfg.get('level', 'INFO')).upper(),
            file=cfg.get('file'),
            format=cfg.get('format', self.logging.format)
        )

    def _apply_env_overrides(self) -> None:
        """Environment variables win over the YAML file"""
        if os.getenv("CAMERA_MODEL"):
            self.camera.model = os.environ["CAMERA_MODEL"]
        if os.getenv("CAMERA_HTTP_HOST"):
            self.camera.http_host = os.environ["CAMERA_HTTP_HOST"]
        if os.getenv("CAMERA_RTSP_URL"):
            self.camera.rtsp_url = os.environ["CAMERA_RTSP_URL"]
        if os.getenv("LOG_LEVEL"):
            self.logging.level = os.environ["LOG_LEVEL"].upper()

        retention_days = os.getenv("EVENT_RETENTION_DAYS")
        if retention_days:
            try:
                self.retention.event_retention_days = int(retention_days)
            except ValueError:
                raise ConfigurationError(
                    f"EVENT_RETENTION_DAYS must be an integer, got {retention_days!r}"
                )

    def _validate(self) -> None:
        """Validate configuration values"""
        if self.logging.level not in _VALID_LOG_LEVELS:
            raise ConfigurationError(f"Invalid logging level: {self.logging.level}")
        if self.camera.probe_timeout_seconds <= 0:
            raise ConfigurationError("camera.probe_timeout_seconds must be positive")
        if self.api.max_upload_size_mb <= 0:
            raise ConfigurationError("api.max_upload_size_mb must be positive")
        if self.retention.event_retention_days <= 0:
            raise ConfigurationError("retention.event_retention_days must be positive")

    @classmethod
    def get_instance(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Get singleton instance of ConfigManager"""
        if cls._instance is None:
            cls._instance = ConfigManager(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)"""
        cls._instance = None

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary (camera password not included)"""
        return {
            'camera': {
                'model': self.camera.model,
                'http_host': self.camera.http_host,
                'probe_timeout_seconds': self.camera.probe_timeout_seconds
            },
            'database': {
                'host': self.database.host,
                'port': self.database.port,
                'user': self.database.user,
                'name': self.database.name
            },
            'api': {
                'max_upload_size_mb': self.api.max_upload_size_mb
            },
            'retention': {
                'event_retention_days': self.retention.event_retention_days
            },
            'logging': {
                'level': self.logging.level,
                'file': self.logging.file
            }
        }


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)


def setup_logging(config: LoggingConfig) -> None:
    """Configure root logging from the logging section"""
    handlers = [logging.StreamHandler()]
    if config.file:
        log_path = Path(config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding='utf-8'))

    logging.basicConfig(
        level=getattr(logging, config.level, logging.INFO),
        format=config.format,
        handlers=handlers,
        force=True
    )
