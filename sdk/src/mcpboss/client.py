"""
MCP Boss API client

Async client for the MCP Boss REST API: agents and agent runs, hosted
functions, and deployments.

Example:
    from mcpboss import McpBossClient

    async with McpBossClient() as client:
        result = await client.query("What's the weather in Oslo?")
        print(result.text)

        for fn in await client.list_hosted_functions():
            print(fn["id"], fn["name"])
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .auth import BearerTokenAuth
from .config import ConfigLoader, McpBossConfig
from .events import EventStreamClient
from .exceptions import ApiError, McpBossError, QueryTimeoutError
from .utils import get_error_message

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
RUN_POLL_INTERVAL = 1.0
DEFAULT_RUNTIME = "node24"
PREFERRED_MODEL_ID = "gpt-5"

AUTO_AGENT_SYSTEM_MESSAGE = (
    "You are an assistant. Please make sure you use any tools available to you to answer "
    "questions. Think step by step. Be concise and accurate."
)


@dataclass
class QueryOptions:
    """Optional agent selection and run parameters for `query`."""

    agent_id: Optional[str] = None
    model_id: Optional[str] = None
    llm_api_key_id: Optional[str] = None
    limit_mcp_servers: Optional[List[str]] = None
    limit_tools: Optional[List[str]] = None
    dont_auto_create_agent: bool = False
    timeout: Optional[float] = None  # seconds


@dataclass
class QueryResult:
    """Result of an agent run."""

    type: str  # "success" or "error"
    text: str
    full_output: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.type == "success"


def select_agent(agents: List[Dict[str, Any]], options: QueryOptions) -> Optional[Dict[str, Any]]:
    """Pick an existing agent matching the query options.

    Priority: exact agent id, model id + api key id, model id, api key id.
    Without any criteria the first agent is used.
    """
    if options.agent_id:
        for agent in agents:
            if agent.get("id") == options.agent_id:
                logger.debug(f"Found agent by ID: {options.agent_id}")
                return agent

    if options.model_id and options.llm_api_key_id:
        for agent in agents:
            if agent.get("modelId") == options.model_id and agent.get("apiKeyId") == options.llm_api_key_id:
                logger.debug(f"Found agent by model ID and API key ID: {options.model_id}, {options.llm_api_key_id}")
                return agent

    if options.model_id:
        for agent in agents:
            if agent.get("modelId") == options.model_id:
                logger.debug(f"Found agent by model ID: {options.model_id}")
                return agent

    if options.llm_api_key_id:
        for agent in agents:
            if agent.get("apiKeyId") == options.llm_api_key_id:
                logger.debug(f"Found agent by API key ID: {options.llm_api_key_id}")
                return agent

    if not (options.agent_id or options.model_id or options.llm_api_key_id) and agents:
        logger.debug(f"Using first available agent: {agents[0].get('id')}")
        return agents[0]

    return None


def _run_text(output: Dict[str, Any]) -> str:
    message = (output.get("data") or {}).get("message") or {}
    parts = [part.get("text") for part in message.get("content") or [] if isinstance(part, dict)]
    return "\n".join(text for text in parts if text)


class McpBossClient:
    """Client for the MCP Boss API."""

    def __init__(
        self,
        config: Optional[McpBossConfig] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or ConfigLoader.default().get_config()
        self.timeout = timeout
        self.auth = BearerTokenAuth(self.config.token)
        self._transport = transport
        self._client = httpx.AsyncClient(
            base_url=self.config.api_url,
            auth=self.auth,
            timeout=timeout,
            transport=transport,
        )
        logger.debug(f"McpBossClient initialized for {self.config.api_url}")

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "McpBossClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        resp = await self._client.request(method, path, **kwargs)
        if resp.is_error:
            try:
                detail = get_error_message(resp.json())
            except ValueError:
                detail = resp.text[:300]
            raise ApiError(detail or resp.reason_phrase, status_code=resp.status_code)
        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as e:
            raise ApiError(f"Invalid JSON response from {path}: {e}", status_code=resp.status_code) from e
        return data if isinstance(data, dict) else {"data": data}

    # Agents

    async def list_agents(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "agents")
        return data.get("agents") or []

    async def list_llm_models(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "agents/llm-models")
        return data.get("models") or []

    async def create_agent(self, body: Dict[str, Any]) -> Dict[str, Any]:
        data = await self._request("POST", "agents", json=body)
        return data["agent"]

    async def start_run(
        self,
        agent_id: str,
        prompt: str,
        limit_mcp_servers: Optional[List[str]] = None,
        limit_tools: Optional[List[str]] = None,
    ) -> str:
        body: Dict[str, Any] = {"customPrompt": prompt}
        if limit_mcp_servers is not None:
            body["limitMcpServers"] = limit_mcp_servers
        if limit_tools is not None:
            body["limitTools"] = limit_tools
        data = await self._request("POST", f"agents/{agent_id}/runs", json=body)
        run_id = data.get("runId")
        if not run_id:
            raise ApiError("No run data returned")
        return run_id

    async def get_run(self, agent_id: str, run_id: str) -> Dict[str, Any]:
        data = await self._request("GET", f"agents/{agent_id}/runs/{run_id}")
        if "run" not in data:
            raise ApiError("No run data returned")
        return data["run"]

    async def _auto_create_agent(self, options: QueryOptions) -> Dict[str, Any]:
        models = await self.list_llm_models()
        logger.debug(f"Found {len(models)} available models")
        model = (
            next((m for m in models if m.get("id") == options.model_id), None)
            or next((m for m in models if m.get("id") == PREFERRED_MODEL_ID), None)
            or (models[0] if models else None)
        )
        if model is None:
            raise McpBossError("No LLM models available to create an agent")

        logger.debug(
            f"Creating agent with model {model.get('name')} from provider {model.get('llmApiId')} "
            f"with key {options.llm_api_key_id or 'default key'}"
        )
        return await self.create_agent({
            "modelId": model["id"],
            "llmApiId": model.get("llmApiId"),
            "apiKeyId": options.llm_api_key_id,
            "name": f"Auto-created agent for model {model.get('name')}",
            "description": "An agent created automatically by the mcpboss Python SDK",
            "modelConfiguration": {},
            "systemMessage": AUTO_AGENT_SYSTEM_MESSAGE,
            "prompt": "",
            "isEnabled": True,
            "inputSchema": "",
            "outputSchema": "",
        })

    async def query(self, prompt: str, options: Optional[QueryOptions] = None) -> QueryResult:
        """
        Run a prompt on an agent and wait for the result.

        Args:
            prompt: Prompt sent to the agent
            options: Agent selection and run limits

        Returns:
            QueryResult with the agent's text answer

        Raises:
            QueryTimeoutError: the run did not finish within options.timeout
        """
        if options is None:
            options = QueryOptions()
        logger.debug(f"Starting query with options: {options}")

        agents = await self.list_agents()
        logger.debug(f"Found {len(agents)} agents")
        agent = select_agent(agents, options)
        if agent is None:
            if options.dont_auto_create_agent:
                raise McpBossError("No matching agent found and auto-creation is disabled")
            logger.debug("Did not find existing agent, will attempt to create one")
            agent = await self._auto_create_agent(options)

        run_id = await self.start_run(
            agent["id"],
            prompt,
            limit_mcp_servers=options.limit_mcp_servers,
            limit_tools=options.limit_tools,
        )
        logger.debug(f"Started run {run_id}, waiting for result")

        start = time.monotonic()
        while options.timeout is None or time.monotonic() - start < options.timeout:
            await asyncio.sleep(RUN_POLL_INTERVAL)
            run = await self.get_run(agent["id"], run_id)
            if run.get("outcome", "unknown") == "unknown":
                continue

            logger.debug(f"Got outcome: {run.get('outcome')}")
            output = run.get("output") or {}
            if output.get("type") == "error":
                return QueryResult(type="error", text=output.get("data") or "")
            return QueryResult(
                type="success",
                text=_run_text(output),
                full_output=output.get("data") or {},
            )

        raise QueryTimeoutError("Timeout reached while waiting for run to complete")

    # Hosted functions

    async def list_hosted_functions(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "hosted-functions")
        return data.get("functions") or []

    async def get_hosted_function(self, function_id: str) -> Dict[str, Any]:
        data = await self._request("GET", f"hosted-functions/{function_id}")
        return data.get("function", data)

    async def create_hosted_function(
        self,
        name: str,
        description: Optional[str] = None,
        runtime: str = DEFAULT_RUNTIME,
    ) -> Dict[str, Any]:
        data = await self._request("POST", "hosted-functions", json={
            "name": name,
            "description": description or f"Hosted function {name}",
            "runtime": runtime,
        })
        function = data.get("function")
        if not function:
            raise ApiError("Failed to create hosted function: No function data returned")
        return function

    async def update_hosted_function(self, function_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PUT", f"hosted-functions/{function_id}", json=body)

    async def start_hosted_function(self, function_id: str) -> None:
        await self._request("POST", f"hosted-functions/{function_id}/start")

    async def upload_hosted_function(self, function_id: str, zip_path: str) -> None:
        with open(zip_path, "rb") as f:
            files = {"file": ("function.zip", f.read(), "application/zip")}
        await self._request("POST", f"hosted-functions/{function_id}/upload", files=files)
        logger.info(f"Uploaded {os.path.basename(zip_path)} to hosted function {function_id}")

    async def list_hosted_function_tools(
        self,
        function_id: str,
        pod_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = {"podName": pod_name} if pod_name else None
        return await self._request("GET", f"hosted-functions/{function_id}/tools", params=params)

    # Deployments

    async def get_deployment_status(self, function_id: str) -> Dict[str, Any]:
        return await self._request("GET", "deployments/status", params={"hostedFunctionId": function_id})

    async def get_deployment_logs(self, pod_name: str, previous: bool = True) -> Dict[str, str]:
        params = {"podName": pod_name}
        if previous:
            params["previous"] = "true"
        data = await self._request("GET", "deployments/logs", params=params)
        logs = data.get("logs") or {}
        if not isinstance(logs, dict):
            raise ApiError(f"Malformed deployment logs response for pod {pod_name}")
        return {"stdout": logs.get("stdout") or "", "stderr": logs.get("stderr") or ""}

    def deployment_log_stream(self, function_id: str, read_timeout: Optional[float] = None) -> EventStreamClient:
        """Event stream of rollout progress for a hosted function."""
        kwargs: Dict[str, Any] = {}
        if read_timeout is not None:
            kwargs["read_timeout"] = read_timeout
        return EventStreamClient(
            f"{self.config.api_url}deployments/deployment-logs",
            auth=self.auth,
            params={"hostedFunctionId": function_id},
            transport=self._transport,
            **kwargs,
        )
