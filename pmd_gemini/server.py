#!/usr/bin/env python3
"""
PMD-Gemini Service

HTTP façade over Salesforce Code Analyzer (PMD engine) with Gemini-backed
fix suggestions.

Usage:
    python -m pmd_gemini.server                      # Serve on $PORT (default 8080)
    python -m pmd_gemini.server --port 9000 -v       # Custom port, debug logging
    python -m pmd_gemini.server --config service.yaml
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

import uvicorn
from loguru import logger

from .modules.api import create_app
from .modules.config import load_config
from .modules.errors import ConfigError
from .modules.fix_advisor import build_fix_advisor


def setup_logging(verbose: bool = False, log_file: Optional[str] = None, level: str = "INFO") -> None:
    """Configure logging with loguru."""
    logger.remove()

    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level="DEBUG" if verbose else level,
        colorize=True,
    )

    if log_file:
        logger.add(
            log_file,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            level="DEBUG",
            rotation="10 MB",
            retention="7 days",
        )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="pmd-gemini",
        description="Serve PMD scans and Gemini fix suggestions over HTTP",
    )
    parser.add_argument("--host", help="Bind address (overrides HOST)")
    parser.add_argument("--port", type=int, help="Port (overrides PORT)")
    parser.add_argument("--config", help="YAML config file (overrides PMD_CONFIG)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--log-file", help="Also write logs to this file")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        setup_logging(args.verbose, args.log_file)
        logger.error(f"Invalid configuration: {e}")
        return 2

    setup_logging(args.verbose, args.log_file, level=config.log_level.upper())

    host = args.host or config.host
    port = args.port or config.port

    # Built exactly once; every request shares this handle.
    fix_advisor = build_fix_advisor(config)
    app = create_app(config, fix_advisor)

    logger.info(f"PMD-Gemini Service running on port {port}")
    logger.info(f"Health check: http://localhost:{port}/health")
    uvicorn.run(app, host=host, port=port, log_level="info")
    return 0


if __name__ == "__main__":
    sys.exit(main())
