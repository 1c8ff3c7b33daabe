#!/usr/bin/env python3
"""
Main entry point for the Jira project search MCP server

Run this script to start the MCP server over stdio with environment-based
configuration. Logs go to stderr (stdout carries the MCP protocol) and,
optionally, to a file.
"""

import asyncio
import logging
import os
import sys
from typing import Any, Dict, Optional

from jira_mcp_server.mcp_server import create_mcp_server


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure logging for the application."""
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    return float(value) if value else None


def load_config_from_env() -> Dict[str, Any]:
    """Load configuration from environment variables."""
    config = {
        # Jira settings
        "jira_base_url": os.getenv("JIRA_BASE_URL", ""),
        "jira_email": os.getenv("JIRA_EMAIL"),
        "jira_api_token": os.getenv("JIRA_API_TOKEN"),
        "jira_personal_token": os.getenv("JIRA_PAT"),
        "jira_rest_path": os.getenv("JIRA_REST_PATH", "/rest/api/2"),
        "jira_timeout": int(os.getenv("JIRA_TIMEOUT", "30")),
        "jira_max_retries": int(os.getenv("JIRA_MAX_RETRIES", "3")),

        # Catalog and index settings
        "projects_cache_ttl": int(os.getenv("PROJECTS_CACHE_TTL", "3600")),
        "projects_fetch_timeout": _env_float("PROJECTS_FETCH_TIMEOUT"),
        "index_refresh_interval": int(os.getenv("INDEX_REFRESH_INTERVAL", "600")),

        # Search settings
        "min_similarity": float(os.getenv("MIN_SIMILARITY", "0.33")),
        "max_vector_distance": float(os.getenv("MAX_VECTOR_DISTANCE", "0.7")),

        # Vector search settings
        "enable_vector_search": _env_bool("ENABLE_VECTOR_SEARCH", "true"),
        "vector_store_type": os.getenv("VECTOR_STORE_TYPE", "file"),
        "vector_store_path": os.getenv("VECTOR_STORE_PATH", "./data/vectors.txt"),

        # Embedding settings
        "openai_api_key": os.getenv("OPENAI_API_KEY"),
        "openai_base_url": os.getenv("OPENAI_BASE_URL"),
        "embedding_model": os.getenv("EMBEDDING_MODEL", "text-embedding-3-large"),
        "embedding_dimensions": int(os.getenv("EMBEDDING_DIMENSIONS", "1536")),
        "embedding_batch_tokens": int(os.getenv("EMBEDDING_BATCH_TOKENS", "8000")),
        "embedding_timeout": float(os.getenv("EMBEDDING_TIMEOUT", "30")),

        # Server settings
        "server_name": os.getenv("SERVER_NAME", "jira-project-search-mcp"),
        "server_version": os.getenv("SERVER_VERSION", "1.0.0")
    }

    # Validate required settings
    if not config["jira_base_url"]:
        raise ValueError("JIRA_BASE_URL environment variable is required")

    if not config["jira_personal_token"] and not (config["jira_email"] and config["jira_api_token"]):
        raise ValueError("Either JIRA_PAT or JIRA_EMAIL/JIRA_API_TOKEN must be provided")

    if config["vector_store_type"] not in ("file", "memory"):
        raise ValueError(f"VECTOR_STORE_TYPE must be 'file' or 'memory', got {config['vector_store_type']!r}")

    return config


async def main():
    """Main application entry point."""
    setup_logging(os.getenv("LOG_LEVEL", "INFO"), os.getenv("LOG_FILE"))

    logger = logging.getLogger(__name__)
    logger.info("Jira project search MCP server starting up...")

    server = None
    try:
        config = load_config_from_env()
        logger.info("Configuration loaded from environment")

        server = create_mcp_server(config)

        logger.info("Server configuration:")
        logger.info(f"  - Jira URL: {config['jira_base_url']}")
        logger.info(f"  - Catalog TTL: {config['projects_cache_ttl']}s, index refresh: {config['index_refresh_interval']}s")
        logger.info(
            f"  - Vector search: {'enabled' if server.config.semantic_search_configured else 'disabled'}"
            f" ({config['vector_store_type']})"
        )

        await server.run()

    except Exception as e:
        logger.error(f"Failed to start server: {e}")
        return 1

    finally:
        if server is not None:
            try:
                await server.shutdown()
            except Exception as e:
                logger.error(f"Error during shutdown: {e}")

    return 0


if __name__ == "__main__":
    try:
        exit_code = asyncio.run(main())
        sys.exit(exit_code)
    except KeyboardInterrupt:
        sys.exit(0)
