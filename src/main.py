"""Main entry point for the ledger intelligence CLI"""

import argparse
import json
import sys
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional
from dotenv import load_dotenv

# Load environment variables FIRST, before any other imports
# Find the .env file in the project root
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(dotenv_path=env_path)

from src.constants import BusinessType, ModelName
from src.ml.benchmarks import BenchmarkCatalogue
from src.ml.coa_mapper import COAMapper, canonical_catalogue
from src.ml.registry import ModelRegistry
from src.orchestrator.insight_engine import InsightEngine
from src.orchestrator.training_pipeline import TrainingPipeline
from src.storage.model_store import create_model_store
from src.tools.ledger_client import InMemoryLedger, LedgerClient, load_ledger_from_json
from src.utils.config_loader import get_section, load_config
from src.utils.errors import IntelligenceError
from src.utils.logging import get_logger

logger = get_logger(__name__)


class Services(NamedTuple):
    registry: ModelRegistry
    coa_mapper: COAMapper
    pipeline: TrainingPipeline
    engine: InsightEngine


def build_services(ledger: LedgerClient, config: Optional[Dict[str, Any]] = None,
                   backend: Optional[str] = None) -> Services:
    """Wire the store, registry, pipeline and engine around one ledger."""
    store, history = create_model_store(backend)
    registry = ModelRegistry(ledger, store, config)
    coa_mapper = COAMapper(ledger, registry, get_section(config, "account_classifier"))
    pipeline = TrainingPipeline(ledger, registry, history, get_section(config, "training_pipeline"))
    engine = InsightEngine(
        ledger,
        registry,
        coa_mapper,
        BenchmarkCatalogue(get_section(config, "benchmarks")),
        get_section(config, "insight_engine"),
    )
    return Services(registry, coa_mapper, pipeline, engine)


def load_ledger(path: str) -> InMemoryLedger:
    """Load a fixture; fixtures without a chart of accounts get the built-in catalogue."""
    ledger = load_ledger_from_json(path)
    if not ledger.list_canonical_accounts():
        for business_type in BusinessType:
            ledger.add_canonical_accounts(canonical_catalogue(business_type))
    return ledger


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Not an ISO date: {value}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ledger-intel",
        description="Local statistical intelligence over an organization's ledger",
    )
    parser.add_argument('--ledger', required=True, help="JSON ledger fixture")
    parser.add_argument('--config', default=None, help="Settings YAML (default: config/settings.yaml)")
    parser.add_argument('--backend', choices=["redis", "memory"], default=None,
                        help="Model store backend (default: $STATE_BACKEND)")

    sub = parser.add_subparsers(dest="command", required=True)

    train = sub.add_parser("train", help="Train one model, or all, for an organization")
    train.add_argument('--org', required=True)
    train.add_argument('--model', default="all", choices=["all"] + [m.value for m in ModelName])

    for name, help_text in (("analyze", "Full analysis as JSON"),
                            ("insights", "Ranked insights as JSON"),
                            ("summary", "Sanitized summary prompt, optionally translated")):
        command = sub.add_parser(name, help=help_text)
        command.add_argument('--org', required=True)
        command.add_argument('--cash', type=float, default=None, help="Current cash on hand")
        command.add_argument('--as-of', type=_parse_date, default=None, help="Analysis date (YYYY-MM-DD)")
        if name == "summary":
            command.add_argument('--audience', default="founder", choices=["founder", "investor", "technical"])
            command.add_argument('--translate', action='store_true', help="Send the prompt to the LLM translator")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
        ledger = load_ledger(args.ledger)
        services = build_services(ledger, config, args.backend)

        if args.command == "train":
            models = list(ModelName) if args.model == "all" else [ModelName(args.model)]
            output = [services.pipeline.train_model(args.org, m).model_dump(mode="json") for m in models]
        elif args.command == "analyze":
            output = services.engine.run_full_analysis(args.org, args.cash, args.as_of).model_dump(mode="json")
        elif args.command == "insights":
            output = services.engine.get_proprietary_insights(args.org, args.cash, args.as_of).model_dump(mode="json")
        else:
            analysis = services.engine.summarize(
                args.org, args.audience, translate=args.translate, current_cash=args.cash, as_of=args.as_of
            )
            output = {"summary": analysis.natural_language_summary}

    except IntelligenceError as e:
        logger.error(f"Main execution failed: {e}")
        print(json.dumps({"error": str(e)}), file=sys.stderr)
        return 1

    print(json.dumps(output, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
