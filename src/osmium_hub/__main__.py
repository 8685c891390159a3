# src/osmium_hub/__main__.py
import asyncio
import os
import signal
import sys
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import traceback

from osmium_hub.api.server import APIServer
from osmium_hub.core.communication_service import CommunicationService
from osmium_hub.core.engine import EngineState, build_engine
from osmium_hub.utils.logging import setup_logging, get_logger
from osmium_hub.utils.exceptions import ConfigurationError, InitializationError

DEFAULT_CONFIG_PATH = "src/config/default.yml"

# environment variable -> (section path, converter)
ENV_OVERRIDES = {
    'MQTT_HOST': (('communication', 'mqtt', 'host'), str),
    'MQTT_PORT': (('communication', 'mqtt', 'port'), int),
    'MQTT_USER': (('communication', 'mqtt', 'username'), str),
    'MQTT_PASS': (('communication', 'mqtt', 'password'), str),
    'DISPATCH_MODE': (('dispatch', 'mode'), str),
    'PORT': (('api', 'port'), int),
}

class ConfigManager:
    """Manages configuration loading and validation"""

    required_sections = ['api', 'communication', 'dispatch', 'logging']

    @staticmethod
    def apply_env_overrides(config: Dict[str, Any], environ=os.environ) -> Dict[str, Any]:
        for variable, (path, convert) in ENV_OVERRIDES.items():
            if variable not in environ:
                continue
            try:
                value = convert(environ[variable])
            except ValueError:
                raise ConfigurationError(f"Invalid value for {variable}: {environ[variable]!r}")
            section = config
            for key in path[:-1]:
                section = section.setdefault(key, {})
            section[path[-1]] = value
        return config

    @classmethod
    def load_config(cls, config_path: str) -> Dict[str, Any]:
        """Load and validate configuration from YAML file"""
        try:
            with open(config_path, 'r') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError:
            raise ConfigurationError(f"Error parsing configuration file: {traceback.format_exc()}")
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        if not isinstance(config, dict):
            raise ConfigurationError("Configuration file is empty or incorrectly formatted")

        missing_sections = [section for section in cls.required_sections if section not in config]
        if missing_sections:
            raise ConfigurationError(f"Missing required configuration sections: {', '.join(missing_sections)}")

        return cls.apply_env_overrides(config)


class OsmiumHubApp:
    """Main application class"""

    def __init__(self, config_path: str):
        self.logger = get_logger("Main App")
        try:
            self.config = ConfigManager.load_config(config_path)
            setup_logging(self.config.get('logging', {}))
        except ConfigurationError:
            self.logger.error(f"Configuration error: {traceback.format_exc()}")
            sys.exit(1)

        self.shutdown_event = asyncio.Event()
        self.api_server = APIServer(self.config, self.shutdown_event)
        self.communication_service: Optional[CommunicationService] = None
        self.engine: Optional[EngineState] = None

    async def initialize_components(self):
        """Initialize all application components"""
        try:
            dispatch_config = self.config['dispatch']
            if str(dispatch_config.get('mode', 'push')).lower() == 'push':
                self.config['communication'].setdefault('mqtt', {})['enabled'] = True

            self.communication_service = CommunicationService(self.config)
            await self.communication_service.initialize()

            self.engine = build_engine(dispatch_config, publisher=self.communication_service.mqtt)
            await self.communication_service.attach(self.engine.registry)

            self.api_server.initialize(self.engine)
            self.logger.info("All components initialized successfully")
        except Exception:
            raise InitializationError(f"Failed to initialize components: {traceback.format_exc()}")

    async def shutdown(self):
        """Gracefully shutdown all components"""
        self.logger.info("Initiating shutdown sequence")
        try:
            if self.engine:
                await self.engine.shutdown()
            if self.communication_service:
                await self.communication_service.shutdown()
            self.logger.info("Shutdown completed successfully")
        except Exception:
            self.logger.error(f"Error during shutdown: {traceback.format_exc()}")
        finally:
            self.shutdown_event.set()

    def handle_signals(self):
        """Set up signal handlers for graceful shutdown"""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            self.logger.info(f"Received signal {signum}")
            loop.create_task(self.shutdown())

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler, sig)

    async def run(self):
        """Main application entry point"""
        try:
            self.handle_signals()
            await self.initialize_components()
            await self.api_server.start()
        except InitializationError:
            self.logger.error(f"Initialization error: {traceback.format_exc()}")
            await self.shutdown()
            sys.exit(1)
        except Exception:
            self.logger.error(f"Unexpected error: {traceback.format_exc()}")
            await self.shutdown()
            sys.exit(1)

def create_default_config(config_path: Path):
    """Create default configuration file if it doesn't exist"""
    if not config_path.exists():
        example_config = """
api:
  host: "0.0.0.0"
  port: 3000

communication:
  mqtt:
    enabled: true
    host: "localhost"
    port: 1883
    username: null
    password: null
    client_id: "osmium-server"
    connection_timeout: 90

dispatch:
  mode: "push"          # push: publish over MQTT, pull: devices poll /device/command
  topic_prefix: "osmium"
  publish_timeout: 5

logging:
  level: "INFO"
  file: "logs/osmium_hub.log"
  max_size: 10
  backup_count: 5
  format: "%(asctime)s - %(name)s - [%(levelname)s] - %(message)s"
"""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(example_config)
        print(f"Created default config at {config_path}")

def main():
    """Application entry point"""
    config_path = Path(os.environ.get('OSMIUM_HUB_CONFIG', DEFAULT_CONFIG_PATH))
    create_default_config(config_path)

    app = OsmiumHubApp(str(config_path))
    asyncio.run(app.run())

if __name__ == "__main__":
    main()
