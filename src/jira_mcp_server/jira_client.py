"""
Jira REST API Client

Fetches the project catalog from Jira (Cloud or Server/Data Center)
over an aiohttp session, with retries and rate-limit handling.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Union

import aiohttp
from pydantic import BaseModel, Field, ValidationError

from .projects_cache import Project

logger = logging.getLogger(__name__)


class JiraProjectPayload(BaseModel):
    """A project item as returned by ``GET /project``."""
    key: str = Field(..., min_length=1, description="Project key")
    name: str = Field(..., min_length=1, description="Project name")
    id: Optional[Union[str, int]] = Field(None, description="Numeric project id")
    description: Optional[str] = Field(None, description="Project description (expand=description)")

    def to_project(self) -> Project:
        return Project(key=self.key, name=self.name, description=self.description or None)


class JiraClientConfig(BaseModel):
    """Configuration for the Jira client."""
    base_url: str = Field(..., description="Jira base URL")
    email: Optional[str] = Field(None, description="Account email for basic auth")
    api_token: Optional[str] = Field(None, description="API token for basic auth")
    personal_token: Optional[str] = Field(None, description="Personal access token (bearer auth)")
    rest_path: str = Field("/rest/api/2", description="REST API path prefix")
    timeout: int = Field(30, description="Request timeout in seconds")
    max_retries: int = Field(3, description="Maximum number of retries")
    rate_limit_delay: float = Field(0.1, description="Delay between requests")


class JiraClient:
    """
    Asynchronous client for the Jira REST API.

    Only the project listing is needed by project search; the session is
    opened lazily on first use.
    """

    def __init__(self, config: JiraClientConfig):
        self.config = config
        self.session: Optional[aiohttp.ClientSession] = None
        self._auth: Optional[aiohttp.BasicAuth] = None
        self._base_headers = {
            "Content-Type": "application/json",
            "Accept": "application/json"
        }

        if config.personal_token:
            self._base_headers["Authorization"] = f"Bearer {config.personal_token}"
        elif config.email and config.api_token:
            self._auth = aiohttp.BasicAuth(config.email, config.api_token)
        else:
            raise ValueError("Either a personal access token or email/API token must be provided")

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def connect(self) -> None:
        """Initialize the HTTP session."""
        if self.session is not None and not self.session.closed:
            return

        connector = aiohttp.TCPConnector(limit=10, limit_per_host=5)
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)

        self.session = aiohttp.ClientSession(
            connector=connector,
            timeout=timeout,
            headers=self._base_headers,
            auth=self._auth
        )

    async def close(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None

    def _url(self, endpoint: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{self.config.rest_path}{endpoint}"

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict] = None,
        data: Optional[Dict] = None
    ) -> Any:
        """
        Make HTTP request with error handling and rate limiting.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint path below the REST prefix
            params: Query parameters
            data: Request body data

        Returns:
            JSON response data

        Raises:
            aiohttp.ClientError: The request failed on every attempt
        """
        await self.connect()
        url = self._url(endpoint)

        for attempt in range(self.config.max_retries):
            try:
                if attempt > 0:
                    await asyncio.sleep(self.config.rate_limit_delay * attempt)

                async with self.session.request(
                    method, url, params=params, json=data
                ) as response:
                    if response.status == 200:
                        return await response.json()
                    elif response.status == 429:
                        logger.warning(f"Rate limited by Jira on {endpoint}, attempt {attempt + 1}")
                        await asyncio.sleep(1 * (attempt + 1))
                        continue
                    else:
                        response.raise_for_status()

            except aiohttp.ClientResponseError as e:
                # auth and missing-resource errors will not go away on retry
                if e.status in (401, 403, 404) or attempt == self.config.max_retries - 1:
                    raise
                logger.warning(f"Request attempt {attempt + 1} failed: {e}")
                await asyncio.sleep(0.5 * (attempt + 1))
            except aiohttp.ClientError as e:
                logger.warning(f"Request attempt {attempt + 1} failed: {e}")
                if attempt == self.config.max_retries - 1:
                    raise
                await asyncio.sleep(0.5 * (attempt + 1))

        raise aiohttp.ClientError(f"Jira rate limit persisted after {self.config.max_retries} attempts")

    async def get_projects(self) -> List[Project]:
        """
        Retrieve all projects visible to the configured account.

        Items that do not validate are skipped with a warning.

        Returns:
            List of projects in upstream order
        """
        response = await self._make_request(
            "GET", "/project", params={"expand": "description,projectKeys"}
        )
        if not isinstance(response, list):
            raise ValueError(f"Unexpected project list payload: {type(response).__name__}")

        projects = []
        for item in response:
            try:
                projects.append(JiraProjectPayload.model_validate(item).to_project())
            except ValidationError as e:
                logger.warning(f"Skipping invalid project payload: {e.errors()[0].get('msg')}")

        logger.debug(f"Fetched {len(projects)} projects from Jira")
        return projects

    async def test_connection(self) -> Dict[str, Any]:
        """
        Test connection to Jira.

        Returns:
            Dict containing connection status and server info
        """
        try:
            data = await self._make_request("GET", "/serverInfo")
            logger.info("Successfully connected to Jira")
            return {
                "success": True,
                "version": data.get("version"),
                "deployment_type": data.get("deploymentType"),
                "message": "Connection successful"
            }
        except Exception as e:
            logger.error(f"Failed to connect to Jira: {e}")
            return {
                "success": False,
                "message": f"Connection failed: {str(e)}"
            }


def create_jira_client(
    base_url: str,
    email: Optional[str] = None,
    api_token: Optional[str] = None,
    personal_token: Optional[str] = None,
    rest_path: str = "/rest/api/2",
    timeout: int = 30,
    max_retries: int = 3
) -> JiraClient:
    """
    Create a Jira client with the provided configuration.

    Args:
        base_url: Jira instance URL
        email: Account email for basic auth (if no personal token)
        api_token: API token for basic auth (if no personal token)
        personal_token: Personal access token
        rest_path: REST API path prefix
        timeout: Request timeout in seconds
        max_retries: Attempts per request

    Returns:
        Configured JiraClient instance
    """
    config = JiraClientConfig(
        base_url=base_url,
        email=email,
        api_token=api_token,
        personal_token=personal_token,
        rest_path=rest_path,
        timeout=timeout,
        max_retries=max_retries
    )

    return JiraClient(config)
