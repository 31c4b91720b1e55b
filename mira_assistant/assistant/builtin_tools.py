"""
Builtin tools for the assistant.

All tools follow the same register pattern used for remote catalog tools:
a top-level ``register_builtin_tools(registry, context)`` function that
registers closures with the ToolRegistry.

Context dict keys consumed by builtin tools:

    http        httpx.AsyncClient   Shared HTTP client for the session
    tools       ToolsConfig         Cloud URL, package name, API keys
    user_id     str                 User the session belongs to
"""

import asyncio
import json
import logging
import re
import uuid
from typing import Annotated, Any, Optional, Union

import httpx

from mira_assistant.assistant.tools import ExecutionHandoff, ToolRegistry

logger = logging.getLogger(__name__)

SERPAPI_URL = "https://serpapi.com/search"

_DURATION_RE = re.compile(r"([0-9]+)\s*(seconds?|secs?|s|minutes?|mins?|m)\b", re.IGNORECASE)
_INVALID_DURATION = (
    'Invalid input. Please specify a duration (e.g., "30 seconds" or { "duration": 30 }).'
)


def register_builtin_tools(registry: ToolRegistry, context: dict) -> None:
    """Register all builtin tools with the given registry.

    Args:
        registry: ToolRegistry instance to register tools on.
        context: Dict of session state and helpers that tools need.
    """
    _register_search(registry, context)
    _register_timer(registry)
    _register_app_commands(registry, context)
    _register_thinking(registry)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

def format_serpapi_results(result: dict) -> str:
    """Flatten organic results and the knowledge graph into plain text."""
    lines = []
    for entry in result.get("organic_results") or []:
        title = (entry.get("title") or "").strip() or "No Title"
        source = (entry.get("source") or "").strip() or "No Source"
        snippet = (entry.get("snippet") or "").strip() or "No Snippet"
        lines.append(f"Title: {title}\nSource: {source}\nSnippet: {snippet}")

    kg = result.get("knowledge_graph")
    if kg:
        kg_title = kg.get("title") or "No Title"
        if kg.get("type"):
            lines.append(f"{kg_title}: {kg['type']}.")
        if kg.get("description"):
            lines.append(kg["description"])
        for attribute, value in (kg.get("attributes") or {}).items():
            lines.append(f"{kg_title} {attribute}: {value}.")

    return "\n".join(lines)


def _ddgs_search(query: str) -> list[dict]:
    from ddgs import DDGS

    ddgs = DDGS()
    results = list(ddgs.text(query, max_results=5))
    if not results:
        results = list(ddgs.news(query, max_results=5))
    return results


def _register_search(registry: ToolRegistry, context: dict) -> None:
    http: httpx.AsyncClient = context["http"]
    serpapi_key = context["tools"].serpapi_key

    @registry.register(
        "Searches the web for information about a given query. Pass specific "
        "queries or keywords to retrieve information on any topic like research, "
        "history, entertainment or current events. Does NOT work for personal "
        "information and does NOT work for math.",
        name="Search_Engine",
    )
    async def search_engine(
        search_keyword: Annotated[str, "The search query or keywords to search for"],
        include_image: Annotated[bool, "Whether to include image results"] = False,
    ) -> str:
        if not search_keyword or not search_keyword.strip():
            return "Search keyword cannot be empty. Please provide a valid search query."

        if serpapi_key:
            try:
                response = await http.get(
                    SERPAPI_URL,
                    params={
                        "q": search_keyword,
                        "engine": "google",
                        "api_key": serpapi_key,
                        "hl": "en",
                        "gl": "us",
                    },
                )
                response.raise_for_status()
                formatted = format_serpapi_results(response.json())
                return formatted or f"No results found for '{search_keyword}'."
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("SerpAPI search failed for %r: %s", search_keyword, e)
                return f"Error occurred while searching for {search_keyword}."

        try:
            results = await asyncio.to_thread(_ddgs_search, search_keyword)
        except Exception as e:
            logger.warning("Web search failed for %r: %s", search_keyword, e)
            return f"Search failed: {e}"

        if not results:
            return f"No results found for '{search_keyword}'."

        parts = []
        for r in results[:3]:
            title = r.get("title", "")
            body = r.get("body", r.get("description", ""))
            if body:
                parts.append(f"{title}: {body}")
            elif title:
                parts.append(title)
        return "\n".join(parts) if parts else f"No useful results for '{search_keyword}'."


# ---------------------------------------------------------------------------
# Timer
# ---------------------------------------------------------------------------

def parse_duration(value: Any) -> Optional[int]:
    """
    Seconds from a number, numeric string, ``{"duration": n}`` JSON or
    natural text such as "2 minutes" or "45s". None if nothing usable.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value > 0 else None
    if not isinstance(value, str):
        return None

    text = value.strip()
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, dict):
        return parse_duration(parsed.get("duration"))
    if isinstance(parsed, (int, float)) and not isinstance(parsed, bool):
        return parse_duration(parsed)

    match = _DURATION_RE.search(text)
    if not match:
        return None
    amount = int(match.group(1))
    seconds = amount * 60 if match.group(2).lower().startswith("m") else amount
    return seconds if seconds > 0 else None


def _register_timer(registry: ToolRegistry) -> None:

    @registry.register(
        "Sets a timer for a specified duration in seconds or minutes. Use this "
        "tool when a user asks to set a timer or alarm.",
        name="Timer",
    )
    def timer(
        duration: Annotated[Union[int, str], "Duration in seconds, or text like '2 minutes'"],
    ) -> str:
        seconds = parse_duration(duration)
        if seconds is None:
            return json.dumps({"error": _INVALID_DURATION})
        return json.dumps({"event": "timer_set", "duration": seconds, "timerId": str(uuid.uuid4())})


# ---------------------------------------------------------------------------
# App start/stop
# ---------------------------------------------------------------------------

def _register_app_commands(registry: ToolRegistry, context: dict) -> None:
    http: httpx.AsyncClient = context["http"]
    tools_config = context["tools"]
    user_id = context["user_id"]

    auth_params = {
        "apiKey": tools_config.api_key,
        "packageName": tools_config.package_name,
        "userId": user_id,
    }

    async def list_apps() -> list[dict]:
        try:
            response = await http.get(f"{tools_config.cloud_url}/api/apps", params=auth_params)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Error fetching apps: %s", e)
            return []
        if not isinstance(body, dict) or not body.get("success"):
            logger.warning("Invalid response format from apps API: %r", body)
            return []
        return [
            {
                "packageName": app.get("packageName", ""),
                "name": app.get("name", ""),
                "is_running": bool(app.get("is_running")),
                "is_foreground": bool(app.get("is_foreground")),
            }
            for app in body.get("data") or []
        ]

    async def execute(action: str, package_name: str) -> Union[str, ExecutionHandoff]:
        url = f"{tools_config.cloud_url}/api/apps/{package_name}/{action}"
        logger.info("App command: %s %s", action, package_name)
        try:
            response = await http.post(url, params=auth_params)
            body = response.json()
        except httpx.HTTPError as e:
            return f"Failed to {action} app: {e}"
        except ValueError:
            return f"Failed to {action} app: invalid response"

        if response.is_success and isinstance(body, dict) and body.get("success"):
            if action == "start":
                # The started app owns the display from here on
                return ExecutionHandoff(f"Successfully started app {package_name}")
            return f"Successfully stopped app {package_name}"

        message = body.get("message") if isinstance(body, dict) else None
        return f"Failed to {action} app: {message or 'Unknown error'}"

    async def handle_text_command(text: str) -> Union[str, ExecutionHandoff]:
        lowered = text.lower()
        apps = await list_apps()

        if "close" in lowered or "stop" in lowered:
            running = [a for a in apps if a["is_running"]]
            if not running:
                return "No apps are currently running."
            for app in running:
                if app["name"] and app["name"].lower() in lowered:
                    return await execute("stop", app["packageName"])
            if "this app" in lowered or "current app" in lowered:
                target = next((a for a in running if a["is_foreground"]), running[0])
                return await execute("stop", target["packageName"])
            names = ", ".join(a["name"] for a in running)
            return f"Found {len(running)} running apps. Please specify which app to stop: {names}"

        if "open" in lowered or "start" in lowered:
            for app in apps:
                if app["name"] and app["name"].lower() in lowered:
                    return await execute("start", app["packageName"])
            names = ", ".join(a["name"] for a in apps)
            return f"Please specify which app to start. Available apps: {names}"

        return "Invalid command. Please use 'stop [app name]' or 'start [app name]'."

    @registry.register(
        "Start or stop apps on smart glasses. Use this tool when a user asks to "
        "close, open, start, or stop an app. Pass action 'start' or 'stop' with "
        "the app's package name, or a command like 'close this app' as the action.",
        name="TPA_Commands",
    )
    async def tpa_commands(
        action: Annotated[str, "'start', 'stop', or a spoken command like 'stop the translator'"],
        package_name: Annotated[str, "Package name of the app to start or stop"] = "",
    ) -> Union[str, ExecutionHandoff]:
        normalized = action.strip().lower()
        if normalized in ("start", "stop") and package_name:
            return await execute(normalized, package_name)
        return await handle_text_command(f"{action} {package_name}".strip())


# ---------------------------------------------------------------------------
# Scratchpad
# ---------------------------------------------------------------------------

def _register_thinking(registry: ToolRegistry) -> None:

    @registry.register(
        "Write out internal thoughts, reasoning steps, or memos to self. Use it "
        "to organize your approach to complex problems.",
        name="Internal_Thinking",
    )
    def internal_thinking(
        thought: Annotated[str, "The thought, reasoning step, or internal memo to process"],
    ) -> str:
        thought = thought.strip()
        if not thought:
            return "No thought provided. Please provide some content to think about."
        logger.debug("Agent thought: %s", thought)
        return f'Thought processed: "{thought}"\nContinuing with reasoning...'
