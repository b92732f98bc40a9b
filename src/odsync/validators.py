"""Configuration validators for odsync."""

import logging
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

# Graph requires upload chunk sizes to be multiples of 320 KiB
UPLOAD_CHUNK_UNIT = 320 * 1024
MAX_UPLOAD_CHUNK_SIZE = 60 * 1024 * 1024


class ValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


class ConfigValidator:
    """Base class for configuration validators."""

    def validate(self, value: Any) -> Any:
        """Validate and normalize a configuration value.

        Args:
            value: Raw configuration value

        Returns:
            Validated and normalized value

        Raises:
            ValidationError: If validation fails
        """
        raise NotImplementedError


class SyncDirectoryValidator(ConfigValidator):
    """Validates sync directory path, creating it when missing."""

    def validate(self, value: Any) -> str:
        if not isinstance(value, (str, Path)):
            raise ValidationError(f"Sync directory must be a string or Path, got: {type(value)}")

        path = Path(value).expanduser().resolve()

        if not path.parent.exists():
            raise ValidationError(f"Parent directory does not exist: {path.parent}")

        if not path.exists():
            try:
                path.mkdir(parents=True, exist_ok=True)
                logger.info(f"Created sync directory: {path}")
            except OSError as e:
                raise ValidationError(f"Failed to create sync directory {path}: {e}")

        if not path.is_dir():
            raise ValidationError(f"Sync directory path exists but is not a directory: {path}")

        return str(path)


class PathValidator(ConfigValidator):
    """Validates a file path (the file itself need not exist)."""

    def validate(self, value: Any) -> str:
        if not isinstance(value, (str, Path)) or not str(value).strip():
            raise ValidationError(f"Must be a non-empty path, got: {value!r}")
        return str(Path(value).expanduser())


class LogLevelValidator(ConfigValidator):
    """Validates log level."""

    VALID_LEVELS = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}

    def validate(self, value: Any) -> str:
        if not isinstance(value, str):
            raise ValidationError(f"Log level must be a string, got: {type(value)}")

        level = value.upper()

        if level not in self.VALID_LEVELS:
            raise ValidationError(
                f"Invalid log level: {value}. Must be one of: {', '.join(sorted(self.VALID_LEVELS))}"
            )

        return level


class BooleanValidator(ConfigValidator):
    """Validates boolean values."""

    TRUE_VALUES = {'true', '1', 'yes', 'on', 'enabled'}
    FALSE_VALUES = {'false', '0', 'no', 'off', 'disabled'}

    def validate(self, value: Any) -> bool:
        if isinstance(value, bool):
            return value

        if isinstance(value, str):
            normalized = value.lower().strip()

            if normalized in self.TRUE_VALUES:
                return True

            if normalized in self.FALSE_VALUES:
                return False

            raise ValidationError(
                f"Invalid boolean value: {value}. Expected: true/false, yes/no, 1/0, on/off, enabled/disabled"
            )

        if isinstance(value, int):
            return bool(value)

        raise ValidationError(f"Cannot convert to boolean: {value}")


class IntegerValidator(ConfigValidator):
    """Validates integer values with optional min/max bounds."""

    def __init__(self, min_value: int = None, max_value: int = None):
        self.min_value = min_value
        self.max_value = max_value

    def validate(self, value: Any) -> int:
        if isinstance(value, bool):
            raise ValidationError(f"Must be an integer, got: {value}")
        try:
            int_value = int(value)
        except (ValueError, TypeError):
            raise ValidationError(f"Must be an integer, got: {value}")

        if self.min_value is not None and int_value < self.min_value:
            raise ValidationError(f"Must be at least {self.min_value}, got: {int_value}")

        if self.max_value is not None and int_value > self.max_value:
            raise ValidationError(f"Must be at most {self.max_value}, got: {int_value}")

        return int_value


class ChunkSizeValidator(IntegerValidator):
    """Validates upload chunk size (a multiple of 320 KiB)."""

    def __init__(self):
        super().__init__(min_value=UPLOAD_CHUNK_UNIT, max_value=MAX_UPLOAD_CHUNK_SIZE)

    def validate(self, value: Any) -> int:
        size = super().validate(value)
        if size % UPLOAD_CHUNK_UNIT:
            raise ValidationError(f"Upload chunk size must be a multiple of {UPLOAD_CHUNK_UNIT} bytes, got: {size}")
        return size


class HttpsUrlValidator(ConfigValidator):
    """Validates an https base URL and strips the trailing slash."""

    def validate(self, value: Any) -> str:
        if not isinstance(value, str):
            raise ValidationError(f"URL must be a string, got: {type(value)}")

        parsed = urlparse(value.strip())
        if parsed.scheme != 'https' or not parsed.hostname:
            raise ValidationError(f"URL must be an absolute https URL, got: {value}")

        return value.strip().rstrip('/')


# Registry of validators for known config keys
VALIDATORS = {
    'sync_directory': SyncDirectoryValidator(),
    'database_path': PathValidator(),
    'log_level': LogLevelValidator(),
    'max_parallel_transfers': IntegerValidator(min_value=1, max_value=64),
    'download_batch_size': IntegerValidator(min_value=1, max_value=10000),
    'upload_batch_size': IntegerValidator(min_value=1, max_value=10000),
    'queue_capacity': IntegerValidator(min_value=1, max_value=10000),
    'max_retries': IntegerValidator(min_value=0, max_value=10),
    'retry_base_delay_ms': IntegerValidator(min_value=0, max_value=60000),
    'upload_chunk_size': ChunkSizeValidator(),
    'compute_hashes': BooleanValidator(),
    'use_trash': BooleanValidator(),
    'graph_api_base': HttpsUrlValidator(),
}


def validate_config_value(key: str, value: Any) -> Any:
    """Validate a configuration value using registered validators.

    Args:
        key: Configuration key
        value: Value to validate

    Returns:
        Validated and normalized value

    Raises:
        ValidationError: If validation fails
    """
    if key in VALIDATORS:
        return VALIDATORS[key].validate(value)

    # Unknown keys pass through unchanged
    return value
