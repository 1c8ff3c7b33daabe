"""
Jira Project Search MCP Server

MCP server exposing project resolution tools:
- Fuzzy, transliteration-aware project lookup by key or name
- Semantic project search backed by embeddings (optional)
- Manual rebuild of the project search index
- System status reporting
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool
from pydantic import BaseModel, Field

from .embeddings import EmbeddingClient, EmbeddingConfig
from .index_scheduler import RefreshScheduler
from .jira_client import JiraClient, create_jira_client
from .project_search import DEFAULT_LIMIT, ProjectSearchService
from .projects_cache import ProjectsCache
from .vector_store import create_vector_store

logger = logging.getLogger(__name__)

MAX_FIND_LIMIT = 500


class ServerConfig(BaseModel):
    """Configuration for the MCP server."""

    # Jira settings
    jira_base_url: str = Field(..., description="Jira base URL")
    jira_email: Optional[str] = Field(None, description="Jira account email (basic auth)")
    jira_api_token: Optional[str] = Field(None, description="Jira API token (basic auth)")
    jira_personal_token: Optional[str] = Field(None, description="Jira personal access token")
    jira_rest_path: str = Field("/rest/api/2", description="Jira REST API path prefix")
    jira_timeout: int = Field(30, description="Jira request timeout in seconds")
    jira_max_retries: int = Field(3, description="Attempts per Jira request")

    # Catalog and index settings
    projects_cache_ttl: int = Field(3600, description="Project catalog cache TTL in seconds")
    projects_fetch_timeout: Optional[float] = Field(
        None, description="Timeout for a whole catalog fetch including retries; derived from the Jira settings if unset"
    )
    index_refresh_interval: int = Field(600, description="Minimum seconds between index rebuilds")

    # Search settings
    min_similarity: float = Field(0.33, description="Minimum lexical similarity for a match")
    max_vector_distance: float = Field(0.7, description="Maximum cosine distance for a semantic match")

    # Vector search settings
    enable_vector_search: bool = Field(True, description="Enable semantic project search")
    vector_store_type: str = Field("file", description="Vector store type (file, memory)")
    vector_store_path: str = Field("./data/vectors.txt", description="Vector store file path")

    # Embedding settings
    openai_api_key: Optional[str] = Field(None, description="Embedding provider API key")
    openai_base_url: Optional[str] = Field(None, description="Embedding provider base URL")
    embedding_model: str = Field("text-embedding-3-large", description="Embedding model name")
    embedding_dimensions: int = Field(1536, description="Embedding vector dimension")
    embedding_batch_tokens: int = Field(8000, description="Token budget per embedding request")
    embedding_timeout: float = Field(30.0, description="Embedding request timeout in seconds")

    # Server settings
    server_name: str = Field("jira-project-search-mcp", description="MCP server name")
    server_version: str = Field("1.0.0", description="MCP server version")

    @property
    def semantic_search_configured(self) -> bool:
        return self.enable_vector_search and bool(self.openai_api_key)

    @property
    def catalog_fetch_timeout(self) -> float:
        if self.projects_fetch_timeout is not None:
            return self.projects_fetch_timeout
        # every attempt may use the full request timeout, plus backoff between attempts
        retries = self.jira_max_retries
        return float(self.jira_timeout * retries + retries * (retries + 1))


TOOLS = [
    Tool(
        name="jira_find_project",
        description=(
            "Find Jira projects by key or name. Tolerates typos, word order, "
            "Cyrillic/Latin transliteration and wrong keyboard layout. "
            "Use \"*\" to list all projects."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Project key, name or a fragment of it; \"*\" for all projects"
                },
                "limit": {
                    "type": "integer",
                    "description": "Maximum number of projects to return",
                    "default": DEFAULT_LIMIT,
                    "minimum": 1,
                    "maximum": MAX_FIND_LIMIT
                }
            },
            "required": ["query"]
        }
    ),
    Tool(
        name="jira_refresh_project_index",
        description="Refetch the Jira project list and rebuild the project search index",
        inputSchema={
            "type": "object",
            "properties": {
                "force": {
                    "type": "boolean",
                    "description": "Rebuild even if the index was refreshed recently",
                    "default": True
                }
            }
        }
    ),
    Tool(
        name="get_system_status",
        description="Get server, configuration and project search status",
        inputSchema={
            "type": "object",
            "properties": {
                "check_jira_connection": {
                    "type": "boolean",
                    "description": "Also call Jira to verify connectivity and credentials",
                    "default": False
                }
            }
        }
    ),
]


class JiraMCPServer:
    """
    MCP server for Jira project resolution.

    Components are created on first use by :meth:`initialize`; a prebuilt
    search service may be injected instead.
    """

    def __init__(self, config: ServerConfig, search_service: Optional[ProjectSearchService] = None):
        self.config = config
        self.server = Server(config.server_name)

        self.jira_client: Optional[JiraClient] = None
        self.search_service = search_service

        self.is_initialized = False
        self.started_at = datetime.now()

        self._setup_handlers()

    def _setup_handlers(self) -> None:
        """Setup MCP request handlers."""

        @self.server.list_tools()
        async def handle_list_tools() -> List[Tool]:
            """List all available MCP tools."""
            return TOOLS

        @self.server.call_tool()
        async def handle_call_tool(name: str, arguments: dict) -> List[TextContent]:
            """Handle tool execution requests."""
            return await self.call_tool(name, arguments)

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]]) -> List[TextContent]:
        """Route a tool call; failures become a JSON error payload."""
        arguments = arguments or {}
        try:
            if not self.is_initialized:
                await self.initialize()

            if name == "jira_find_project":
                result = await self._handle_find_project(arguments)
            elif name == "jira_refresh_project_index":
                result = await self._handle_refresh_project_index(arguments)
            elif name == "get_system_status":
                result = await self._handle_get_system_status(arguments)
            else:
                raise ValueError(f"Unknown tool: {name}")

            return [TextContent(type="text", text=json.dumps(result, indent=2, default=str, ensure_ascii=False))]

        except Exception as e:
            logger.error(f"Error executing tool {name}: {e}")
            error_result = {
                "error": str(e),
                "tool": name,
                "timestamp": datetime.now().isoformat()
            }
            return [TextContent(type="text", text=json.dumps(error_result, indent=2, ensure_ascii=False))]

    async def initialize(self) -> None:
        """Initialize all server components."""
        if self.is_initialized:
            return

        logger.info("Initializing Jira project search MCP server...")

        try:
            if self.search_service is None:
                self.search_service = self._build_search_service()

            await self.search_service.initialize()

            self.is_initialized = True
            logger.info("Jira project search MCP server initialized")

        except Exception as e:
            logger.error(f"Failed to initialize server: {e}")
            raise

    def _build_search_service(self) -> ProjectSearchService:
        self.jira_client = create_jira_client(
            base_url=self.config.jira_base_url,
            email=self.config.jira_email,
            api_token=self.config.jira_api_token,
            personal_token=self.config.jira_personal_token,
            rest_path=self.config.jira_rest_path,
            timeout=self.config.jira_timeout,
            max_retries=self.config.jira_max_retries
        )

        projects_cache = ProjectsCache(
            fetch_projects=self.jira_client.get_projects,
            ttl=self.config.projects_cache_ttl,
            fetch_timeout=self.config.catalog_fetch_timeout
        )
        scheduler = RefreshScheduler(interval=self.config.index_refresh_interval)

        vector_store = None
        embedder = None
        if self.config.semantic_search_configured:
            vector_store = create_vector_store(
                store_type=self.config.vector_store_type,
                persist_path=self.config.vector_store_path,
                embedding_dimension=self.config.embedding_dimensions
            )
            embedder = EmbeddingClient(EmbeddingConfig(
                api_key=self.config.openai_api_key,
                base_url=self.config.openai_base_url,
                model=self.config.embedding_model,
                dimensions=self.config.embedding_dimensions,
                batch_token_limit=self.config.embedding_batch_tokens,
                timeout=self.config.embedding_timeout
            ))
            logger.info(f"Semantic search enabled ({self.config.embedding_model}, {self.config.vector_store_type} store)")
        elif self.config.enable_vector_search:
            logger.info("Vector search enabled but no embedding API key set; using lexical search")

        return ProjectSearchService(
            projects_cache=projects_cache,
            scheduler=scheduler,
            vector_store=vector_store,
            embedder=embedder,
            min_similarity=self.config.min_similarity,
            max_vector_distance=self.config.max_vector_distance
        )

    async def _handle_find_project(self, args: Dict[str, Any]) -> Dict[str, Any]:
        """Handle project lookup."""
        query = args.get("query")
        if not isinstance(query, str):
            raise ValueError("query must be a string")

        limit = args.get("limit", DEFAULT_LIMIT)
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_FIND_LIMIT:
            raise ValueError(f"limit must be an integer between 1 and {MAX_FIND_LIMIT}")

        logger.info(f"Finding project: {query!r} (limit {limit})")
        return await self.search_service.find(query, limit)

    async def _handle_refresh_project_index(self, args: Dict[str, Any]) -> Dict[str, Any]:
        """Handle manual index rebuild."""
        force = args.get("force", True)

        logger.info(f"Refreshing project index (force={force})")
        refreshed = await self.search_service.refresh_index(force=bool(force))

        snapshot = self.search_service.projects_cache.peek()
        return {
            "refreshed": refreshed,
            "projects": len(snapshot) if snapshot else 0,
            "time_to_next_update": self.search_service.scheduler.get_time_to_next_update()
        }

    async def _handle_get_system_status(self, args: Dict[str, Any]) -> Dict[str, Any]:
        """Handle system status requests."""
        logger.info("Getting system status")

        status = {
            "server_initialized": self.is_initialized,
            "server_name": self.config.server_name,
            "server_version": self.config.server_version,
            "started_at": self.started_at.isoformat(),
            "timestamp": datetime.now().isoformat(),
            "configuration": {
                "jira_base_url": self.config.jira_base_url,
                "jira_rest_path": self.config.jira_rest_path,
                "projects_cache_ttl": self.config.projects_cache_ttl,
                "index_refresh_interval": self.config.index_refresh_interval,
                "min_similarity": self.config.min_similarity,
                "max_vector_distance": self.config.max_vector_distance,
                "vector_search_enabled": self.config.enable_vector_search,
                "vector_store_type": self.config.vector_store_type,
                "embedding_model": self.config.embedding_model
            }
        }

        if self.search_service is not None:
            try:
                status["project_search"] = await self.search_service.get_status()
            except Exception as e:
                status["project_search"] = {"error": str(e)}

        if args.get("check_jira_connection") and self.jira_client is not None:
            status["jira_connection"] = await self.jira_client.test_connection()

        return status

    async def run(self) -> None:
        """Serve MCP requests over stdio until the client disconnects."""
        await self.start_server()

        options = self.server.create_initialization_options()
        async with stdio_server() as (read_stream, write_stream):
            await self.server.run(read_stream, write_stream, options)

    async def start_server(self) -> None:
        """Initialize components ahead of the first request."""
        logger.info("Starting Jira project search MCP server...")
        try:
            await self.initialize()
        except Exception as e:
            # tools retry initialization on the next call
            logger.warning(f"Deferred initialization: {e}")

        logger.info("MCP Server is ready to accept requests")

    async def shutdown(self) -> None:
        """Shutdown the server gracefully."""
        logger.info("Shutting down Jira project search MCP server...")

        if self.search_service is not None:
            await self.search_service.close()

        if self.jira_client is not None:
            await self.jira_client.close()

        logger.info("Server shutdown complete")


def create_mcp_server(config_dict: Dict[str, Any]) -> JiraMCPServer:
    """
    Create MCP server from configuration dictionary.

    Args:
        config_dict: Configuration parameters

    Returns:
        Configured JiraMCPServer instance
    """
    config = ServerConfig(**config_dict)
    return JiraMCPServer(config)
