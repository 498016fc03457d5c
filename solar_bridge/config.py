"""Configuration loader for solar-bridge."""

from __future__ import annotations

from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import constants


class ConfigurationError(RuntimeError):
    """Raised when the configuration file holds unusable values."""


@dataclass(slots=True)
class SerialConfig:
    port: str = constants.DEFAULT_SERIAL_PORT
    baudrate: int = constants.DEFAULT_BAUDRATE
    read_size: int = constants.DEFAULT_READ_SIZE
    max_line_length: int = constants.DEFAULT_MAX_LINE_LENGTH  # 0 keeps the line buffer unbounded
    encoding: str = "utf-8"


@dataclass(slots=True)
class ProtocolConfig:
    enforce_ranges: bool = True


@dataclass(slots=True)
class MQTTConfig:
    enabled: bool = False
    broker_host: str = constants.DEFAULT_BROKER_HOST
    broker_port: int = constants.DEFAULT_BROKER_PORT
    username: Optional[str] = None
    password: Optional[str] = None
    base_topic: str = constants.DEFAULT_BASE_TOPIC
    client_id: str = constants.APP_NAME


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_serial: bool = False


@dataclass(slots=True)
class HealthConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 0


@dataclass(slots=True)
class AlertsConfig:
    history_size: int = constants.DEFAULT_ALERT_HISTORY


@dataclass(slots=True)
class BridgeConfig:
    serial: SerialConfig
    protocol: ProtocolConfig
    mqtt: MQTTConfig
    logging: LoggingConfig
    health: HealthConfig
    alerts: AlertsConfig
    raw: ConfigParser
    path: Path


def _defaults() -> dict[str, dict[str, str]]:
    return {
        "serial": {
            "port": constants.DEFAULT_SERIAL_PORT,
            "baudrate": str(constants.DEFAULT_BAUDRATE),
            "read_size": str(constants.DEFAULT_READ_SIZE),
            "max_line_length": str(constants.DEFAULT_MAX_LINE_LENGTH),
            "encoding": "utf-8",
        },
        "protocol": {
            "enforce_ranges": "true",
        },
        "mqtt": {
            "enabled": "false",
            "broker_host": constants.DEFAULT_BROKER_HOST,
            "broker_port": str(constants.DEFAULT_BROKER_PORT),
            "base_topic": constants.DEFAULT_BASE_TOPIC,
            "client_id": constants.APP_NAME,
        },
        "logging": {
            "level": "INFO",
            "log_serial": "false",
        },
        "health": {
            "enabled": "false",
            "host": "127.0.0.1",
            "port": "0",
        },
        "alerts": {
            "history_size": str(constants.DEFAULT_ALERT_HISTORY),
        },
    }


def load_config(path: Optional[Path] = None) -> BridgeConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(_defaults())

    if config_path.exists():
        parser.read(config_path)

    try:
        return _build_config(parser, config_path)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {exc}") from exc


def _build_config(parser: ConfigParser, config_path: Path) -> BridgeConfig:
    broker_host_value = parser.get("mqtt", "broker_host")
    broker_port_value = parser.getint(
        "mqtt", "broker_port", fallback=constants.DEFAULT_BROKER_PORT
    )

    if ":" in broker_host_value:
        host_part, port_part = broker_host_value.rsplit(":", 1)
        try:
            parsed_port = int(port_part)
        except ValueError:
            pass
        else:
            broker_host_value = host_part
            broker_port_value = parsed_port
            parser.set("mqtt", "broker_host", host_part)
            parser.set("mqtt", "broker_port", str(parsed_port))

    serial = SerialConfig(
        port=parser.get("serial", "port"),
        baudrate=parser.getint("serial", "baudrate"),
        read_size=max(1, parser.getint("serial", "read_size")),
        max_line_length=max(0, parser.getint("serial", "max_line_length")),
        encoding=parser.get("serial", "encoding"),
    )

    protocol = ProtocolConfig(
        enforce_ranges=parser.getboolean("protocol", "enforce_ranges", fallback=True),
    )

    mqtt = MQTTConfig(
        enabled=parser.getboolean("mqtt", "enabled", fallback=False),
        broker_host=broker_host_value,
        broker_port=broker_port_value,
        username=parser.get("mqtt", "username", fallback=None),
        password=parser.get("mqtt", "password", fallback=None),
        base_topic=parser.get("mqtt", "base_topic").strip("/")
        or constants.DEFAULT_BASE_TOPIC,
        client_id=parser.get("mqtt", "client_id"),
    )

    log_path_value = parser.get("logging", "path", fallback="").strip()
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_serial=parser.getboolean("logging", "log_serial", fallback=False),
    )

    health = HealthConfig(
        enabled=parser.getboolean("health", "enabled", fallback=False),
        host=parser.get("health", "host", fallback="127.0.0.1"),
        port=parser.getint("health", "port", fallback=0),
    )

    alerts = AlertsConfig(
        history_size=max(1, parser.getint("alerts", "history_size")),
    )

    return BridgeConfig(
        serial=serial,
        protocol=protocol,
        mqtt=mqtt,
        logging=logging_config,
        health=health,
        alerts=alerts,
        raw=parser,
        path=config_path,
    )


def save_config(config: BridgeConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)
