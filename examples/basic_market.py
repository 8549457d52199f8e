"""Basic Narrative Market walkthrough.

This example demonstrates:
- Creating narratives and checking for near-duplicates
- Staking and unstaking on narratives
- Reading trending scores, sentiment and market metrics

Uses the deterministic "hash" embedding backend so it runs without a model
download. Set embedding_backend="local" or "openai" for real semantic search.
"""

from narrative_market import EngineConfig, NarrativeMarketEngine

ALICE = "0x1111111111111111111111111111111111111111"
BOB = "0x2222222222222222222222222222222222222222"


def main():
    # Initialize engine
    config = EngineConfig(db_path="market.db", embedding_backend="hash")
    engine = NarrativeMarketEngine(config)

    try:
        fraud = engine.create_narrative(
            "Corporate fraud",
            "Financial misstatements and SEC violations",
            "A mid-size firm inflates revenue for three years.",
            creator=ALICE,
            tags=["finance", "crime"],
        )
        colony = engine.create_narrative(
            "Mars colony",
            "First settlers on the red planet",
            "A crew of twelve lands near Jezero crater.",
            creator=BOB,
            tags=["scifi"],
        )

        # Before listing a new narrative, look for existing ones like it
        matches = engine.find_similar_narratives(fraud.embedded_text, threshold=0.8)
        for narrative, similarity in matches:
            print(f"Similar: {narrative.name} ({similarity:.3f})")

        # Stake on both, then pull some stake back
        engine.staking.stake(fraud.id, ALICE, 500)
        engine.staking.stake(fraud.id, BOB, 250)
        engine.staking.stake(colony.id, BOB, 100)
        engine.staking.unstake(colony.id, BOB, 40)

        print("\n--- Trending ---")
        for narrative, trend in engine.trending_narratives(limit=5):
            print(
                f"{narrative.name}: momentum={trend.momentum:.2f} "
                f"change={trend.percentage_change:.1f}% "
                f"score={trend.metric.trending_score:.2f}"
            )

        print("\n--- Market ---")
        metrics = engine.analytics.market_metrics()
        sentiment = engine.analytics.market_sentiment()
        print(f"TVL: {metrics.total_value_locked}")
        print(f"Active stakers (24h): {metrics.active_stakers}")
        print(f"Sentiment: {sentiment.overall}")
        print(f"APY on '{fraud.name}': {engine.staking.narrative_apy(fraud.id):.2f}%")

    finally:
        engine.close()


if __name__ == "__main__":
    main()
