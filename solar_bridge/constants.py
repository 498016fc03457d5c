"""Constants used across the solar-bridge package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "solar-bridge"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME

DEFAULT_SERIAL_PORT = "/dev/ttyACM0"
DEFAULT_BAUDRATE = 9600
DEFAULT_READ_SIZE = 256
DEFAULT_MAX_LINE_LENGTH = 4096

DEFAULT_BROKER_HOST = "localhost"
DEFAULT_BROKER_PORT = 1883
DEFAULT_BASE_TOPIC = APP_NAME

DEFAULT_ALERT_HISTORY = 5

# Physical model of the panel used for the derived metrics.
ADC_MAX = 1023
MAX_POWER_WATTS = 40.0
NOMINAL_VOLTAGE = 12.4
EFFICIENCY_SCALE = 95

ANGLE_MIN = 0
ANGLE_MAX = 180
