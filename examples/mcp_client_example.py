"""Example of using Narrative Market through MCP.

This demonstrates how a marketplace frontend or agent would interact with
the MCP server.
"""

import asyncio
import json
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

STAKER = "0x1111111111111111111111111111111111111111"


async def run_example():
    """Run example MCP interactions."""
    # Connect to the MCP server
    server_params = StdioServerParameters(
        command="narrative-market-mcp",
        env={
            "NARRATIVE_MARKET_DB_PATH": "example_market.db",
            "NARRATIVE_MARKET_EMBEDDING_BACKEND": "hash",
        },
    )

    async with stdio_client(server_params) as (read, write):
        async with ClientSession(read, write) as session:
            # Initialize connection
            await session.initialize()

            # List available tools
            tools = await session.list_tools()
            print(f"Available tools: {[t.name for t in tools.tools]}")

            print("\n=== Creating narrative ===")
            created = await session.call_tool(
                "create_narrative",
                {
                    "name": "Crypto heist",
                    "description": "A bridge exploit drains a protocol",
                    "content": "An attacker forges withdrawal proofs.",
                    "creator": STAKER,
                    "tags": ["finance", "crypto"],
                },
            )
            narrative = json.loads(created.content[0].text)
            print(f"Created narrative {narrative['id']}")

            print("\n=== Searching for similar narratives ===")
            similar = await session.call_tool(
                "find_similar_narratives",
                {"text": "Crypto heist A bridge exploit drains a protocol", "threshold": 0.5},
            )
            for match in json.loads(similar.content[0].text)["results"]:
                print(f"  - {match['narrative']['name']}: {match['similarity']:.3f}")

            print("\n=== Staking ===")
            await session.call_tool(
                "stake",
                {
                    "narrative_id": narrative["id"],
                    "staker_address": STAKER,
                    "amount": 250,
                },
            )
            # Errors come back as text rather than exceptions
            over = await session.call_tool(
                "unstake",
                {
                    "narrative_id": narrative["id"],
                    "staker_address": STAKER,
                    "amount": 1000,
                },
            )
            print(over.content[0].text)

            print("\n=== Market ===")
            trending = await session.call_tool("get_trending_narratives", {"limit": 5})
            for entry in json.loads(trending.content[0].text)["trending"]:
                print(
                    f"  - {entry['narrative']['name']}: "
                    f"momentum {entry['trending']['momentum']:.2f}"
                )

            metrics = await session.call_tool("get_market_metrics", {})
            print(json.loads(metrics.content[0].text))


if __name__ == "__main__":
    asyncio.run(run_example())
