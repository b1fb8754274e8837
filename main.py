"""
ZigBee Capability Definitions - Command Line
Loads the YAML configuration, builds every device definition through the
extension registry and prints the resulting descriptors as JSON.
"""
import argparse
import json
import logging
import sys
from typing import List, Optional

import yaml

from definitions import load_definitions
from error_handler import ConfigurationError
from modules.config import parse_config
from modules.logging_setup import setup_logging
from yaml_loader import load_yaml_config

logger = logging.getLogger('main')


# ============================================================================
# CLI
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Build Zigbee device definitions from a YAML configuration")
    parser.add_argument("-c", "--config", default="./config/config.yaml", help="Path of the YAML configuration")
    parser.add_argument("-m", "--model", action="append", default=None,
                        help="Only describe this model (repeatable)")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    parser.add_argument("--indent", type=int, default=2)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = parse_config(load_yaml_config(args.config))
    except (FileNotFoundError, yaml.YAMLError, ConfigurationError) as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2

    listener = setup_logging(args.log_level or config.log_level, config.log_dir)
    try:
        try:
            index = load_definitions(config.definitions)
        except ConfigurationError as e:
            logger.error(f"❌ {e}")
            return 1

        descriptors = [
            definition.to_dict() for definition in index
            if not args.model or definition.model in args.model
        ]
        if args.model and not descriptors:
            logger.warning(f"⚠️ No definition matches {args.model}")
        print(json.dumps(descriptors, indent=args.indent, default=str))
        return 0
    finally:
        listener.stop()


if __name__ == "__main__":
    sys.exit(main())
