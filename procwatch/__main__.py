"""
Entry point for the procwatch package.

This module serves as the main entry point when running `python -m procwatch`.
"""

import sys

from .cli import cli


def main():
    """Main entry point for the procwatch command."""
    sys.exit(cli())


if __name__ == "__main__":
    main()
