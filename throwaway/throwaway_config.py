"""Immutable user configurations.

The config is parsed lazily from _GLOBAL_CONFIG_PATH (default:
~/.throwaway/config.yaml), or from the path in $THROWAWAY_CONFIG when set.
A missing file reads as an empty config.

To read a nested-key config:

  >> throwaway_config.get_nested(('aws', 'subnet_id'), default_value)

Example usage:

Consider the following config contents:

    aws:
        use_public_addresses: false
        subnet_id: subnet-0123456789abcdef0

then:

    throwaway_config.get_nested(('aws', 'use_public_addresses'), True)
    # ==> False
    throwaway_config.get_nested(('aws', 'vpc_id'), None)  # ==> None
    throwaway_config.get_nested(('gcp',), None)           # ==> None

The loaded config is never mutated; explicit AwsBuilder calls take precedence
over it.
"""
import copy
import os
import threading
import typing
from typing import Any, Dict, Optional, Tuple

from throwaway import exceptions
from throwaway import throwaway_logging
from throwaway.adaptors import common as adaptors_common
from throwaway.utils import common_utils
from throwaway.utils import schemas

if typing.TYPE_CHECKING:
    import yaml
else:
    yaml = adaptors_common.LazyImport('yaml')

logger = throwaway_logging.init_logger(__name__)

ENV_VAR_CONFIG = 'THROWAWAY_CONFIG'

# Path to the user config file.
_GLOBAL_CONFIG_PATH = '~/.throwaway/config.yaml'

_lock = threading.Lock()
_loaded_config: Optional[Dict[str, Any]] = None


def _resolve_config_path() -> str:
    config_path = os.environ.get(ENV_VAR_CONFIG)
    if config_path is None:
        config_path = _GLOBAL_CONFIG_PATH
    return os.path.expanduser(config_path)


def parse_and_validate_config_file(config_path: str) -> Dict[str, Any]:
    """Reads a YAML config file and validates it against the schema.

    Raises:
        InvalidConfigError: if the file is not valid YAML or does not match
          the config schema.
    """
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise exceptions.InvalidConfigError(
            f'Error in loading config file ({config_path}): {e}') from e
    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise exceptions.InvalidConfigError(
            f'Invalid config YAML from ({config_path}): expected a mapping, '
            f'got {type(config).__name__}.')
    common_utils.validate_schema(config,
                                 schemas.get_config_schema(),
                                 f'Invalid config YAML from ({config_path}). '
                                 'Error: ',
                                 skip_none=False)
    logger.debug(f'Config syntax check passed for path: {config_path}')
    return config


def reload_config() -> None:
    """Re-reads the config file, dropping any previously loaded values."""
    global _loaded_config
    config_path = _resolve_config_path()
    if os.path.exists(config_path):
        config = parse_and_validate_config_file(config_path)
    else:
        logger.debug(f'No config file found at {config_path}.')
        config = {}
    _loaded_config = config


def _get_loaded_config() -> Dict[str, Any]:
    with _lock:
        if _loaded_config is None:
            reload_config()
        assert _loaded_config is not None
        return _loaded_config


def get_nested(keys: Tuple[str, ...], default_value: Any) -> Any:
    """Gets a nested key.

    If any key is not found, or any intermediate key does not point to a dict
    value, returns 'default_value'.
    """
    curr: Any = _get_loaded_config()
    for key in keys:
        if isinstance(curr, dict) and key in curr:
            curr = curr[key]
        else:
            return default_value
    logger.debug(f'User config: {".".join(keys)} -> {curr}')
    return copy.deepcopy(curr)

