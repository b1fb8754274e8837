import logging
from pathlib import Path
from typing import Union

import yaml

logger = logging.getLogger("yaml_loader")


def load_yaml_config(filepath: Union[str, Path]) -> dict:
    """
    Loads configuration data from a YAML file.

    Args:
        filepath: Path of the YAML file holding log level, options and definitions.

    Returns:
        dict: The loaded configuration, empty if the file is empty.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If there is an issue parsing the YAML content.
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Configuration file not found at: {filepath}")

    try:
        with open(filepath, 'r') as f:
            config_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML file {filepath}: {e}")
        raise
    except IOError as e:
        logger.error(f"Error reading config file {filepath}: {e}")
        raise

    if config_data is None:
        return {}
    if not isinstance(config_data, dict):
        raise yaml.YAMLError(f"{filepath}: top level must be a mapping, got {type(config_data).__name__}")
    return config_data
