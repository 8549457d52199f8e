"""MCP server for the Narrative Market engine.

Exposes narrative, staking and market analytics operations as Model Context
Protocol tools.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from datetime import datetime
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent

from narrative_market.engine import NarrativeMarketEngine
from narrative_market.errors import InvalidInput, ServiceUnavailable
from narrative_market.models import EngineConfig, Narrative

logger = logging.getLogger(__name__)

# Global engine instance (initialized on first connection)
_engine: NarrativeMarketEngine | None = None


def get_engine() -> NarrativeMarketEngine:
    """Get or initialize the engine instance."""
    global _engine
    if _engine is None:
        # Load config from environment or use defaults
        config = EngineConfig(
            db_path=os.getenv("NARRATIVE_MARKET_DB_PATH", "narrative_market.db"),
            embedding_backend=os.getenv("NARRATIVE_MARKET_EMBEDDING_BACKEND", "hash"),
            embedding_model=os.getenv(
                "NARRATIVE_MARKET_EMBEDDING_MODEL", "all-mpnet-base-v2"
            ),
            openai_model=os.getenv(
                "NARRATIVE_MARKET_OPENAI_MODEL", "text-embedding-3-small"
            ),
            vector_dimensions=int(
                os.getenv("NARRATIVE_MARKET_VECTOR_DIMENSIONS", "768")
            ),
            max_text_length=int(
                os.getenv("NARRATIVE_MARKET_MAX_TEXT_LENGTH", "5000")
            ),
            embedding_timeout=float(
                os.getenv("NARRATIVE_MARKET_EMBEDDING_TIMEOUT", "10")
            ),
        )
        _engine = NarrativeMarketEngine(config)
    return _engine


# Initialize server
server = Server("narrative_market")


def _to_jsonable(obj: Any) -> Any:
    if isinstance(obj, Narrative):
        # Embeddings are large and only useful to the engine itself
        data = dataclasses.asdict(obj)
        data.pop("embedding")
        return _to_jsonable(data)
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return _to_jsonable(dataclasses.asdict(obj))
    if isinstance(obj, dict):
        return {k: _to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_jsonable(v) for v in obj]
    if isinstance(obj, datetime):
        return obj.isoformat()
    return obj


def _json(result: Any) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(_to_jsonable(result), indent=2))]


# -------------------------------------------------------------------------
# Tool Definitions
# -------------------------------------------------------------------------

_STAKE_SCHEMA = {
    "type": "object",
    "properties": {
        "narrative_id": {"type": "integer", "description": "Narrative id"},
        "staker_address": {
            "type": "string",
            "description": "0x-prefixed wallet address",
        },
        "amount": {"type": "number", "description": "Token amount (> 0)"},
    },
    "required": ["narrative_id", "staker_address", "amount"],
}

TOOLS = [
    Tool(
        name="create_narrative",
        description="Create a narrative and generate its semantic embedding",
        inputSchema={
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Display name"},
                "description": {"type": "string", "description": "Short description"},
                "content": {"type": "string", "description": "Full narrative text"},
                "creator": {"type": "string", "description": "Creator address"},
                "tags": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Free-form tags",
                },
                "modality": {"type": "string", "description": "Content modality"},
            },
            "required": ["name", "description", "content", "creator"],
        },
    ),
    Tool(
        name="get_narrative",
        description="Get a narrative by id",
        inputSchema={
            "type": "object",
            "properties": {"narrative_id": {"type": "integer"}},
            "required": ["narrative_id"],
        },
    ),
    Tool(
        name="list_narratives",
        description="List narratives, newest first",
        inputSchema={
            "type": "object",
            "properties": {
                "tags": {"type": "array", "items": {"type": "string"}},
                "modality": {"type": "string"},
                "creator": {"type": "string"},
                "limit": {"type": "integer"},
                "offset": {"type": "integer"},
            },
        },
    ),
    Tool(
        name="find_similar_narratives",
        description="Find narratives semantically similar to a text",
        inputSchema={
            "type": "object",
            "properties": {
                "text": {"type": "string", "description": "Query text"},
                "threshold": {
                    "type": "number",
                    "description": "Minimum similarity between 0 and 1 (default 0.8)",
                },
                "limit": {"type": "integer", "description": "Max results (default 20)"},
                "tags": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["text"],
        },
    ),
    Tool(
        name="stake",
        description="Stake tokens on a narrative",
        inputSchema=_STAKE_SCHEMA,
    ),
    Tool(
        name="unstake",
        description="Unstake tokens from a narrative",
        inputSchema=_STAKE_SCHEMA,
    ),
    Tool(
        name="get_stake_positions",
        description="List a wallet's stake positions, largest first",
        inputSchema={
            "type": "object",
            "properties": {"staker_address": {"type": "string"}},
            "required": ["staker_address"],
        },
    ),
    Tool(
        name="get_narrative_apy",
        description="Get the current APY (percent) for a narrative",
        inputSchema={
            "type": "object",
            "properties": {"narrative_id": {"type": "integer"}},
            "required": ["narrative_id"],
        },
    ),
    Tool(
        name="get_market_metrics",
        description="Get TVL, active stakers, 24h volume and top narratives",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="get_trending_narratives",
        description="Get narratives ranked by staking momentum",
        inputSchema={
            "type": "object",
            "properties": {
                "limit": {"type": "integer", "description": "Max results (default 20)"}
            },
        },
    ),
    Tool(
        name="get_market_sentiment",
        description="Get bullish/bearish/neutral narrative counts",
        inputSchema={"type": "object", "properties": {}},
    ),
    Tool(
        name="get_narrative_activity",
        description="Get a narrative's staking activity, newest first",
        inputSchema={
            "type": "object",
            "properties": {
                "narrative_id": {"type": "integer"},
                "hours_back": {
                    "type": "number",
                    "description": "Window in hours (default 168)",
                },
            },
            "required": ["narrative_id"],
        },
    ),
    Tool(
        name="get_narrative_metric",
        description="Get a narrative's staking aggregates and trending score",
        inputSchema={
            "type": "object",
            "properties": {"narrative_id": {"type": "integer"}},
            "required": ["narrative_id"],
        },
    ),
]


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return TOOLS


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Handle tool calls."""
    engine = get_engine()
    timeout = engine.config.embedding_timeout

    try:
        # Route to appropriate engine method
        if name == "create_narrative":
            text = (
                f"{arguments['name']} {arguments['description']} "
                f"{arguments['content']}"
            )
            embedding = await engine.embedder.agenerate(text, timeout=timeout)
            narrative = engine.create_narrative(
                name=arguments["name"],
                description=arguments["description"],
                content=arguments["content"],
                creator=arguments["creator"],
                tags=arguments.get("tags"),
                modality=arguments.get("modality", "text"),
                embedding=embedding,
            )
            return _json(narrative)

        elif name == "get_narrative":
            narrative = engine.get_narrative(arguments["narrative_id"])
            if narrative is None:
                return [
                    TextContent(
                        type="text",
                        text=f"Narrative not found: {arguments['narrative_id']}",
                    )
                ]
            return _json(narrative)

        elif name == "list_narratives":
            narratives = engine.list_narratives(
                tags=arguments.get("tags"),
                modality=arguments.get("modality"),
                creator=arguments.get("creator"),
                limit=arguments.get("limit"),
                offset=arguments.get("offset", 0),
            )
            return _json(narratives)

        elif name == "find_similar_narratives":
            text = arguments["text"]
            query_embedding = await engine.embedder.agenerate(text, timeout=timeout)
            matches = engine.find_similar_narratives(
                text,
                threshold=arguments.get("threshold", 0.8),
                limit=arguments.get("limit", 20),
                tags=arguments.get("tags"),
                query_embedding=query_embedding,
            )
            result = [
                {"narrative": narrative, "similarity": similarity}
                for narrative, similarity in matches
            ]
            return _json({"query": text, "results": result})

        elif name == "stake":
            record = engine.staking.stake(
                arguments["narrative_id"],
                arguments["staker_address"],
                arguments["amount"],
            )
            return _json(record)

        elif name == "unstake":
            record = engine.staking.unstake(
                arguments["narrative_id"],
                arguments["staker_address"],
                arguments["amount"],
            )
            return _json(record)

        elif name == "get_stake_positions":
            return _json(engine.staking.positions_for(arguments["staker_address"]))

        elif name == "get_narrative_apy":
            apy = engine.staking.narrative_apy(arguments["narrative_id"])
            return _json({"narrative_id": arguments["narrative_id"], "apy": apy})

        elif name == "get_market_metrics":
            return _json(engine.analytics.market_metrics())

        elif name == "get_trending_narratives":
            trending = engine.trending_narratives(limit=arguments.get("limit", 20))
            result = [
                {"narrative": narrative, "trending": trend}
                for narrative, trend in trending
            ]
            return _json({"trending": result})

        elif name == "get_market_sentiment":
            return _json(engine.analytics.market_sentiment())

        elif name == "get_narrative_activity":
            narrative_id = arguments["narrative_id"]
            hours_back = arguments.get("hours_back", 168)
            activity = engine.analytics.narrative_activity(narrative_id, hours_back)
            return _json(
                {
                    "narrative_id": narrative_id,
                    "hours_back": hours_back,
                    "activity": activity,
                    "total_volume": sum(a.amount for a in activity),
                }
            )

        elif name == "get_narrative_metric":
            metric = engine.analytics.narrative_metric(arguments["narrative_id"])
            return _json(metric)

        else:
            return [
                TextContent(
                    type="text", text=f"Unknown tool: {name}"
                )
            ]

    except InvalidInput as e:
        return [TextContent(type="text", text=f"Invalid input: {e}")]

    except ServiceUnavailable as e:
        return [
            TextContent(type="text", text=f"Service unavailable (retryable): {e}")
        ]

    except Exception as e:
        logger.exception(f"Tool {name} failed")
        return [
            TextContent(
                type="text", text=f"Error: {str(e)}"
            )
        ]


# -------------------------------------------------------------------------
# Main Entry Point
# -------------------------------------------------------------------------


async def main():
    """Run the MCP server."""
    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )


def run():
    """Console entry point."""
    import asyncio

    # stdout carries the protocol, so logs go to stderr
    logging.basicConfig(
        level=os.getenv("NARRATIVE_MARKET_LOG_LEVEL", "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(main())


if __name__ == "__main__":
    run()
