#!/usr/bin/env python3
"""
IMAGECAT - Incremental Image Directory Catalog

Main entry point for the catalog CLI.

Usage:
    python main.py status
    python main.py build --steps 10
    python main.py serve --port 8787 --with-scheduler
"""

from imagecat.cli import cli


if __name__ == '__main__':
    cli()
