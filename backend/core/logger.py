"""Logging setup."""

import logging
import sys


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger with one concise format"""
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
        force=True,
    )
