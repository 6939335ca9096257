"""
Configuration management for the Wikidata radius dump system.
"""

import os
import threading
from typing import Dict, Any, Optional
from dataclasses import dataclass, field, asdict
from pathlib import Path
import json
import logging
from jsonschema import validate, ValidationError

from wikidata_radius_dump.utils.errors import ConfigurationError


DEFAULT_AGENT_NAME = "WikidataRadiusDump/0.1 (https://github.com/wikidata-radius-dump; contact: you@example.com)"


@dataclass
class QueryServiceConfig:
    """Wikidata Query Service (SPARQL endpoint) settings."""
    endpoint: str = "https://query.wikidata.org/sparql"
    agent_name: str = DEFAULT_AGENT_NAME
    request_timeout: float = 55.0  # below the 60s WDQS limit
    min_request_interval: float = 0.2
    retry_attempts: int = 5
    retry_base_delay: float = 1.0
    default_retry_after: float = 5.0


@dataclass
class SearchApiConfig:
    """MediaWiki search API settings used for instance enumeration."""
    endpoint: str = "https://www.wikidata.org/w/api.php"
    agent_name: str = DEFAULT_AGENT_NAME
    page_size: int = 50
    page_delay: float = 0.1
    request_timeout: float = 30.0
    retry_attempts: int = 5
    retry_base_delay: float = 1.0


@dataclass
class CrawlSettings:
    """Tunables for the radius crawl."""
    batch_size: int = 200
    property_batch_size: int = 50
    sample_size: int = 100
    fallback_triples_per_instance: int = 20
    dumps_dir: str = "dumps"


@dataclass
class SystemConfig:
    """Main system configuration."""
    query_service: QueryServiceConfig = field(default_factory=QueryServiceConfig)
    search_api: SearchApiConfig = field(default_factory=SearchApiConfig)
    crawl: CrawlSettings = field(default_factory=CrawlSettings)
    log_level: str = "INFO"
    log_file: Optional[str] = None


# Configuration schema for validation
CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "query_service": {
            "type": "object",
            "properties": {
                "endpoint": {"type": "string", "minLength": 1},
                "agent_name": {"type": "string", "minLength": 1},
                "request_timeout": {"type": "number", "minimum": 1, "maximum": 300},
                "min_request_interval": {"type": "number", "minimum": 0, "maximum": 60.0},
                "retry_attempts": {"type": "integer", "minimum": 1, "maximum": 10},
                "retry_base_delay": {"type": "number", "minimum": 0, "maximum": 60.0},
                "default_retry_after": {"type": "number", "minimum": 0, "maximum": 600.0}
            },
            "additionalProperties": False
        },
        "search_api": {
            "type": "object",
            "properties": {
                "endpoint": {"type": "string", "minLength": 1},
                "agent_name": {"type": "string", "minLength": 1},
                "page_size": {"type": "integer", "minimum": 1, "maximum": 500},
                "page_delay": {"type": "number", "minimum": 0, "maximum": 60.0},
                "request_timeout": {"type": "number", "minimum": 1, "maximum": 300},
                "retry_attempts": {"type": "integer", "minimum": 1, "maximum": 10},
                "retry_base_delay": {"type": "number", "minimum": 0, "maximum": 60.0}
            },
            "additionalProperties": False
        },
        "crawl": {
            "type": "object",
            "properties": {
                "batch_size": {"type": "integer", "minimum": 1, "maximum": 1000},
                "property_batch_size": {"type": "integer", "minimum": 1, "maximum": 500},
                "sample_size": {"type": "integer", "minimum": 1, "maximum": 1000},
                "fallback_triples_per_instance": {"type": "integer", "minimum": 0, "maximum": 10000},
                "dumps_dir": {"type": "string", "minLength": 1}
            },
            "additionalProperties": False
        },
        "log_level": {
            "type": "string",
            "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        },
        "log_file": {"type": ["string", "null"]}
    },
    "additionalProperties": False
}


class ConfigManager:
    """Configuration manager with schema validation and environment overrides."""

    def __init__(self, config_path: str = "config.json"):
        self.config_path = Path(config_path)
        self._config: Optional[SystemConfig] = None
        self._last_modified: Optional[float] = None
        self._lock = threading.RLock()

    def validate_config(self, config_data: Dict[str, Any]) -> None:
        """Validate configuration data against schema."""
        try:
            validate(instance=config_data, schema=CONFIG_SCHEMA)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e.message}")

    def load_config(self) -> SystemConfig:
        """Load configuration from file or environment variables."""
        with self._lock:
            if self.config_path.exists():
                current_modified = self.config_path.stat().st_mtime
                if self._config is None or current_modified != self._last_modified:
                    self._load_from_file()
                    self._last_modified = current_modified
            elif self._config is None:
                self._load_from_env()

            return self._config or SystemConfig()

    def _load_from_file(self) -> None:
        """Load configuration from JSON file with validation."""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                config_data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to read config file {self.config_path}: {e}")

        self.validate_config(config_data)
        self._config = self._dict_to_config(config_data)

        # Environment wins over the file for endpoints and the agent identity
        self._override_with_env_vars()

        logging.info(f"Configuration loaded and validated from {self.config_path}")

    def _load_dotenv(self) -> None:
        """Export KEY=VALUE pairs from a local .env file."""
        env_file = Path('.env')
        if not env_file.exists():
            return
        try:
            with open(env_file, 'r', encoding='utf-8') as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith('#') and '=' in line:
                        key, value = line.split('=', 1)
                        os.environ.setdefault(key.strip(), value.strip())
            logging.info("Loaded environment variables from .env file")
        except OSError as e:
            logging.warning(f"Failed to load .env file: {e}")

    def _override_with_env_vars(self) -> None:
        """Override configuration with environment variables."""
        self._load_dotenv()

        if os.getenv("WDQS_ENDPOINT"):
            self._config.query_service.endpoint = os.getenv("WDQS_ENDPOINT")

        if os.getenv("WIKIMEDIA_API"):
            self._config.search_api.endpoint = os.getenv("WIKIMEDIA_API")

        agent_name = os.getenv("AGENT_NAME")
        if agent_name:
            self._config.query_service.agent_name = agent_name
            self._config.search_api.agent_name = agent_name

        if os.getenv("DUMPS_DIR"):
            self._config.crawl.dumps_dir = os.getenv("DUMPS_DIR")

        log_level = os.getenv("LOG_LEVEL")
        if log_level:
            if log_level.upper() not in CONFIG_SCHEMA["properties"]["log_level"]["enum"]:
                raise ConfigurationError(f"Invalid LOG_LEVEL: {log_level}")
            self._config.log_level = log_level.upper()

    def _load_from_env(self) -> None:
        """Load configuration from environment variables."""
        self._config = SystemConfig()
        self._override_with_env_vars()
        logging.info("Configuration loaded from environment variables")

    def _dict_to_config(self, data: Dict[str, Any]) -> SystemConfig:
        """Convert dictionary to SystemConfig object."""
        config = SystemConfig()

        if "query_service" in data:
            config.query_service = QueryServiceConfig(**data["query_service"])

        if "search_api" in data:
            config.search_api = SearchApiConfig(**data["search_api"])

        if "crawl" in data:
            config.crawl = CrawlSettings(**data["crawl"])

        config.log_level = data.get("log_level", config.log_level)
        config.log_file = data.get("log_file", config.log_file)

        return config

    def reload_if_changed(self) -> bool:
        """Check if config file has changed and reload if necessary."""
        with self._lock:
            if not self.config_path.exists():
                return False

            current_modified = self.config_path.stat().st_mtime
            if current_modified != self._last_modified:
                self.load_config()
                return True
            return False

    def export_config(self) -> Dict[str, Any]:
        """Export current configuration as dictionary."""
        with self._lock:
            if not self._config:
                return {}

            return {
                "query_service": asdict(self._config.query_service),
                "search_api": asdict(self._config.search_api),
                "crawl": asdict(self._config.crawl),
                "log_level": self._config.log_level,
                "log_file": self._config.log_file
            }

    def save_config(self, config_path: Optional[str] = None) -> None:
        """Save current configuration to file."""
        with self._lock:
            if not self._config:
                raise ConfigurationError("No configuration loaded to save")

            save_path = Path(config_path) if config_path else self.config_path
            config_dict = self.export_config()

            self.validate_config(config_dict)

            with open(save_path, 'w', encoding='utf-8') as f:
                json.dump(config_dict, f, indent=2, ensure_ascii=False)

            logging.info(f"Configuration saved to {save_path}")


# Global config manager instance
config_manager = ConfigManager()


def get_config() -> SystemConfig:
    """Get the current system configuration."""
    return config_manager.load_config()


def reload_config() -> SystemConfig:
    """Force reload configuration and return updated config."""
    config_manager._config = None
    config_manager._last_modified = None
    return config_manager.load_config()
