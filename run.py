#!/usr/bin/env python3
"""
Ledgerline Entry Point

Starts the FastAPI server with the accounting engine. Host, port, storage and
logging come from LEDGERLINE_* environment variables (see core_accounting.config).
"""

import sys

import uvicorn

from core_accounting.config import get_config
from core_accounting.logging_config import setup_logging


def run_server(host: str, port: int, workers: int = 1, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "core_accounting.api:app",
        host=host,
        port=port,
        workers=workers,
        reload=debug,
        log_level="info"
    )


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, config.log_format, log_file=config.log_file)
    logger.info("Starting Ledgerline on %s:%s (storage: %s)",
                config.api_host, config.api_port, config.storage_backend)

    try:
        run_server(config.api_host, config.api_port, workers=config.api_workers)
    except KeyboardInterrupt:
        logger.info("Shutting down Ledgerline")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
