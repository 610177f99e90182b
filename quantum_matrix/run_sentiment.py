"""
One-shot runner: fetches live inputs, prints each extractor's reading, the
signal weights and the published S³ record.

    python -m quantum_matrix.run_sentiment [--time-horizon short] [--volatility-regime high] ...
"""

import argparse
import asyncio
import logging

from quantum_matrix.api.core.settings import settings
from quantum_matrix.core.engine import build_engine
from quantum_matrix.core.schema import AnalysisContext


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run the S³ sentiment synthesis once")
    parser.add_argument("--data-source", choices=["social", "news", "mixed"])
    parser.add_argument("--time-horizon", choices=["short", "medium", "long"])
    parser.add_argument("--asset-maturity", choices=["new", "established"])
    parser.add_argument("--volatility-regime", choices=["low", "normal", "high"])
    return parser.parse_args(argv)


async def run(args) -> None:
    engine = build_engine(settings)
    context = None
    if any(v is not None for v in (args.data_source, args.time_horizon, args.asset_maturity, args.volatility_regime)):
        context = AnalysisContext.from_partial(
            data_source=args.data_source,
            time_horizon=args.time_horizon,
            asset_maturity=args.asset_maturity,
            volatility_regime=args.volatility_regime,
        )

    print("\nRunning S³ sentiment synthesis...\n")

    print("Signals contributing:")
    for name, info in (await engine.orchestrator.debug_breakdown()).items():
        flag = "  (fallback)" if info["fallback"] else ""
        print(f"  {name:<15} {info['score']:+.4f}{flag}")

    record = await engine.orchestrator.synthesize(context, use_cache=False)

    print("\nWeights:")
    for name, weight in record.weights.as_dict().items():
        print(f"  {name:<15} {weight:.3f}")

    print("\nResult:")
    print(f"  raw_score:   {record.raw_score:+.3f}")
    print(f"  score:       {record.normalized_score}/100")
    print(f"  label:       {record.label.value}")
    print(f"  confidence:  {record.confidence:.2f}")
    if record.resolution:
        print(f"  resolution:  {record.resolution.signal} via {record.resolution.source} ({record.resolution.nudge:+.2f})")
    print(f"  summary:     {record.summary}")
    print("\nDone.\n")


def main(argv=None):
    logging.basicConfig(level=settings.log_level.upper())
    asyncio.run(run(parse_args(argv)))


if __name__ == "__main__":
    main()
