"""Built-in tools offered to the model on every chat request.

Search-backed tools degrade to an empty result with an ``error`` field rather
than failing the stream. The structured-output tools validate their input and
return it unchanged so the client can render it.
"""

import logging
from typing import Any

from starlette.concurrency import run_in_threadpool

from socratic_gateway.storage.base import InsightStore, StorageError
from socratic_gateway.tools.registry import ToolRegistry
from socratic_gateway.tools.search import SearchClient, SearchError, SearchResult

logger = logging.getLogger("socratic.tools")

SEARCH_MAX_RESULTS = 5
DISCOVER_RECENCY_DAYS = 14
INSIGHT_SAVE_FAILED = "Insight could not be saved"


def _string(description: str, max_length: int | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "string", "description": description}
    if max_length is not None:
        schema["maxLength"] = max_length
    return schema


def _string_list(description: str) -> dict[str, Any]:
    return {"type": "array", "items": {"type": "string"}, "description": description}


def _object(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": properties,
        "required": required,
        "additionalProperties": False,
    }


def _search_error_text(exc: SearchError) -> str:
    if exc.status_code is not None:
        return f"Search API error: {exc.status_code}"
    return exc.message


class WebSearchTool:
    name = "webSearch"
    description = (
        "Search the web for current facts or evidence relevant to the topic being "
        "discussed. Use this to ground your Socratic questions in real-world information."
    )
    input_schema = _object({"query": _string("The search query", 500)}, ["query"])

    def __init__(self, client: SearchClient):
        self._client = client

    async def run(self, arguments: dict[str, Any]) -> dict[str, Any]:
        try:
            results = await self._client.search(
                arguments["query"], max_results=SEARCH_MAX_RESULTS
            )
        except SearchError as exc:
            logger.warning("search_failed", extra={"tool": self.name, "error": exc.message})
            return {"results": [], "error": _search_error_text(exc)}
        return {
            "results": [
                {"title": r.title, "url": r.url, "snippet": r.snippet} for r in results
            ]
        }


class DiscoverResourcesTool:
    name = "discoverResources"
    description = (
        "Search for recently published content (articles, podcasts, essays, videos, "
        "newsletters) relevant to the current discussion. Use this to surface fresh "
        "perspectives the user likely hasn't encountered."
    )
    input_schema = _object(
        {
            "query": _string("Search query to find recent relevant content", 500),
            "topic": _string("The broader topic being discussed", 200),
            "reason": _string(
                "Why these resources matter for this conversation and how they "
                "connect to what the user is exploring",
                500,
            ),
        },
        ["query", "topic", "reason"],
    )

    def __init__(self, client: SearchClient):
        self._client = client

    async def run(self, arguments: dict[str, Any]) -> dict[str, Any]:
        result: dict[str, Any] = {
            "topic": arguments["topic"],
            "reason": arguments["reason"],
            "resources": [],
        }
        try:
            found = await self._client.search(
                arguments["query"],
                max_results=SEARCH_MAX_RESULTS,
                days=DISCOVER_RECENCY_DAYS,
            )
        except SearchError as exc:
            logger.warning("search_failed", extra={"tool": self.name, "error": exc.message})
            result["error"] = _search_error_text(exc)
            return result
        result["resources"] = [self._resource(r) for r in found]
        return result

    @staticmethod
    def _resource(r: SearchResult) -> dict[str, Any]:
        return {
            "title": r.title,
            "url": r.url,
            "snippet": r.snippet,
            "publishedDate": r.published_date,
        }


class SaveInsightTool:
    name = "saveInsight"
    description = (
        "Save a breakthrough insight or realization that the user has reached during "
        "the Socratic dialogue. Only call this when the user has clearly articulated "
        "a genuine understanding."
    )
    input_schema = _object(
        {
            "insight": _string("The insight or realization the user reached", 1000),
            "topic": _string("The topic area of the insight", 100),
        },
        ["insight"],
    )

    def __init__(self, store: InsightStore):
        self._store = store

    async def run(self, arguments: dict[str, Any]) -> dict[str, Any]:
        insight = arguments["insight"]
        topic = arguments.get("topic")
        try:
            await run_in_threadpool(self._store.save_insight, insight, topic)
        except StorageError as exc:
            logger.error("insight_save_failed", extra={"tool": self.name, "error": str(exc)})
            return {
                "saved": False,
                "insight": insight,
                "topic": topic,
                "error": INSIGHT_SAVE_FAILED,
            }
        return {"saved": True, "insight": insight, "topic": topic}


class StructuredOutputTool:
    """A tool whose output is its own validated input, rendered by the client."""

    def __init__(self, name: str, description: str, input_schema: dict[str, Any]):
        self.name = name
        self.description = description
        self.input_schema = input_schema

    async def run(self, arguments: dict[str, Any]) -> dict[str, Any]:
        return dict(arguments)


MAP_ARGUMENT_SCHEMA = _object(
    {
        "claim": _string("The main claim or thesis being argued"),
        "premises": {
            "type": "array",
            "description": "The premises supporting the claim",
            "items": _object(
                {
                    "text": _string("The premise statement"),
                    "evidence": _string_list("Supporting evidence for this premise"),
                },
                ["text", "evidence"],
            ),
        },
        "conclusion": _string("The conclusion drawn from the premises"),
        "counterarguments": {
            "type": "array",
            "description": "Counterarguments to the claim",
            "items": _object(
                {
                    "point": _string("The counterargument"),
                    "rebuttal": _string("Optional rebuttal to the counterargument"),
                },
                ["point"],
            ),
        },
    },
    ["claim", "premises", "conclusion"],
)

SUGGEST_READING_SCHEMA = _object(
    {
        "topic": _string("The topic for reading recommendations"),
        "recommendations": {
            "type": "array",
            "description": "List of reading recommendations",
            "items": _object(
                {
                    "title": _string("Title of the work"),
                    "author": _string("Author of the work"),
                    "type": {
                        "type": "string",
                        "enum": ["book", "article", "paper", "video"],
                        "description": "Type of resource",
                    },
                    "description": _string("Brief description of why this is recommended"),
                    "difficulty": {
                        "type": "string",
                        "enum": ["beginner", "intermediate", "advanced"],
                        "description": "Difficulty level",
                    },
                },
                ["title", "author", "type", "description", "difficulty"],
            ),
        },
    },
    ["topic", "recommendations"],
)

DRAW_DIAGRAM_SCHEMA = _object(
    {
        "title": _string("Brief diagram title"),
        "diagramType": {
            "type": "string",
            "enum": ["flowchart", "sequence", "class"],
            "description": "The type of Mermaid diagram",
        },
        "mermaidSyntax": _string("Valid Mermaid diagram code"),
    },
    ["title", "diagramType", "mermaidSyntax"],
)

RETRIEVAL_PRACTICE_SCHEMA = _object(
    {
        "topic": _string("The concept being tested"),
        "status": {
            "type": "string",
            "enum": ["question", "feedback"],
            "description": "Which phase of the recall loop",
        },
        "question": _string("The retrieval question"),
        "hint": _string("A nudge if the user is stuck"),
        "feedback": _object(
            {
                "assessment": {
                    "type": "string",
                    "enum": ["strong", "partial", "needs_work"],
                    "description": "How well the user recalled the concept",
                },
                "whatWasRight": _string_list("Points the user got right"),
                "whatWasMissed": _string_list("Points the user missed"),
                "correctedExplanation": _string("The corrected or complete explanation"),
                "followUpQuestion": _string("A follow-up question to deepen understanding"),
            },
            [
                "assessment",
                "whatWasRight",
                "whatWasMissed",
                "correctedExplanation",
                "followUpQuestion",
            ],
        ),
    },
    ["topic", "status", "question"],
)

PROGRESSIVE_DISCLOSURE_SCHEMA = _object(
    {
        "concept": _string("What is being explained"),
        "layers": {
            "type": "array",
            "minItems": 2,
            "maxItems": 5,
            "description": "The explanation layers from simple to complex",
            "items": _object(
                {
                    "level": {"type": "number", "description": "Depth level starting at 1"},
                    "title": _string("Short title for this level"),
                    "explanation": _string("The explanation at this depth"),
                    "analogy": _string("Optional analogy to make it concrete"),
                    "readinessQuestion": _string("Question to check before going deeper"),
                },
                ["level", "title", "explanation", "readinessQuestion"],
            ),
        },
        "currentLevel": {
            "type": "number",
            "default": 1,
            "description": "Where the user is now",
        },
    },
    ["concept", "layers"],
)


def structured_output_tools() -> list[StructuredOutputTool]:
    return [
        StructuredOutputTool(
            "mapArgument",
            "Map out the logical structure of an argument with premises, evidence, "
            "conclusion, and counterarguments. Use this when the user is constructing "
            "or defending a structured argument.",
            MAP_ARGUMENT_SCHEMA,
        ),
        StructuredOutputTool(
            "suggestReading",
            "Recommend curated reading materials on a topic. Include a mix of "
            "difficulty levels and resource types. Only recommend real, well-known works.",
            SUGGEST_READING_SCHEMA,
        ),
        StructuredOutputTool(
            "drawDiagram",
            "Draw a visual diagram to illustrate a concept, argument, or process. Use "
            "flowcharts for argument structures, decision trees and cause-and-effect "
            "chains. Use sequence diagrams for back-and-forth interactions. Use class "
            "diagrams for entity relationships. Keep diagrams simple: 4-8 nodes is ideal.",
            DRAW_DIAGRAM_SCHEMA,
        ),
        StructuredOutputTool(
            "retrievalPractice",
            "Structure a recall challenge after teaching a concept. Use this after 3-4 "
            "substantive exchanges on a topic to test the user's understanding. First "
            "call with status 'question' to pose the challenge, then with status "
            "'feedback' after the user responds.",
            RETRIEVAL_PRACTICE_SCHEMA,
        ),
        StructuredOutputTool(
            "progressiveDisclosure",
            "Structure a multi-layered explanation from simple to nuanced. Start with "
            "the simplest mental model and build depth layer by layer, checking "
            "readiness before going deeper.",
            PROGRESSIVE_DISCLOSURE_SCHEMA,
        ),
    ]


def build_default_registry(
    search_client: SearchClient, insight_store: InsightStore
) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(WebSearchTool(search_client))
    for tool in structured_output_tools():
        registry.register(tool)
    registry.register(DiscoverResourcesTool(search_client))
    registry.register(SaveInsightTool(insight_store))
    return registry
