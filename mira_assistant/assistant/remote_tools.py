"""
Tools published by the user's installed apps.

The cloud lists every tool the user's apps expose; each schema is compiled
into a ``Tool`` whose invocation is forwarded to the owning app.
"""

import json
import logging
from datetime import datetime, timezone

import httpx

from mira_assistant.assistant.tools import Tool

logger = logging.getLogger(__name__)

_PARAM_TYPES = {"string", "number", "boolean"}


def _compile_parameters(params: dict) -> dict:
    properties: dict = {}
    required: list[str] = []
    for key, param in (params or {}).items():
        param_type = param.get("type")
        prop: dict = {"type": param_type} if param_type in _PARAM_TYPES else {}
        if param.get("description"):
            prop["description"] = param["description"]
        if param_type == "string" and param.get("enum"):
            prop["enum"] = list(param["enum"])
        properties[key] = prop
        if param.get("required"):
            required.append(key)

    schema: dict = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def compile_tool(
    http: httpx.AsyncClient,
    cloud_url: str,
    package_name: str,
    tool_schema: dict,
    user_id: str,
    timeout_s: float = 40.0,
) -> Tool:
    """
    Build a Tool that forwards calls to an app's tool webhook.

    Args:
        http: Shared HTTP client
        cloud_url: Base URL of the cloud service
        package_name: Package of the app that owns the tool
        tool_schema: ``{id, description, parameters, activationPhrases}``
        user_id: User on whose behalf the tool runs
        timeout_s: Deadline for each call
    """
    tool_id = tool_schema["id"]
    description = tool_schema.get("description", "")
    phrases = tool_schema.get("activationPhrases") or []
    if phrases:
        description += "\nPossibly activated by phrases like: " + ", ".join(phrases)

    webhook_url = f"{cloud_url}/api/tools/apps/{package_name}/tool"

    async def call(**params) -> str:
        payload = {
            "toolId": tool_id,
            "toolParameters": params,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "userId": user_id,
            "activeSession": None,
        }
        logger.info("Calling %s with %s", tool_id, json.dumps(params))
        try:
            response = await http.post(webhook_url, json=payload, timeout=timeout_s)
            response.raise_for_status()
        except httpx.TimeoutException:
            logger.warning("Tool request timed out for %s", tool_id)
            return f"The request to {tool_id} timed out after {timeout_s:g} seconds. Please try again later."
        except httpx.HTTPError as e:
            logger.warning("Tool request failed for %s: %s", tool_id, e)
            return f"Error executing {tool_id}: {e}"

        try:
            data = response.json()
        except ValueError:
            return response.text
        return data if isinstance(data, str) else json.dumps(data)

    return Tool(
        name=tool_id,
        description=description,
        fn=call,
        parameters=_compile_parameters(tool_schema.get("parameters") or {}),
    )


async def fetch_user_tools(
    http: httpx.AsyncClient,
    cloud_url: str,
    user_id: str,
    timeout_s: float = 40.0,
) -> list[Tool]:
    """Fetch and compile every tool of the user's apps. Empty list on failure."""
    url = f"{cloud_url}/api/tools/users/{user_id}/tools"
    try:
        response = await http.get(url)
        response.raise_for_status()
        schemas = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Failed to fetch tools for user %s: %s", user_id, e)
        return []

    tools = []
    for schema in schemas if isinstance(schemas, list) else []:
        try:
            tools.append(
                compile_tool(http, cloud_url, schema["appPackageName"], schema, user_id, timeout_s)
            )
        except (KeyError, TypeError, AttributeError) as e:
            logger.warning("Skipping malformed tool schema %r: %s", schema, e)

    logger.info("Found %d remote tools for user %s", len(tools), user_id)
    return tools
