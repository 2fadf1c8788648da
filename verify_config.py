#!/usr/bin/env python3
"""Validate a mailroom configuration file without loading environment variables.

Usage:
    python verify_config.py [path/to/config.yaml]
"""

import sys
from pathlib import Path

from mailroom.config.loader import validate_config_file


def main() -> int:
    config_file = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("config.example.yaml")
    return 0 if validate_config_file(config_file) else 1


if __name__ == "__main__":
    sys.exit(main())
