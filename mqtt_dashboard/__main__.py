#!/usr/bin/env python3
"""Entry point for mqtt_dashboard package."""

import sys

from .cli import parse_args, connect_and_run


def main():
    args = parse_args()
    sys.exit(connect_and_run(args))


if __name__ == "__main__":
    main()
