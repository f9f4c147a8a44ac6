"""
train_classifier.py
--------------------

This script rebuilds the transaction category classifier from the notes
and corrections stored in the application database.  The vocabulary and
category centroids are written to the configured model store (local JSON
files by default, S3 when ``S3_BUCKET`` is set) so the server picks them up
on its next start.

Optionally it also warms up the two neural models used for budget
suggestions, so the first request after a deploy does not pay for their
cold-start training.

Usage:

    python train_classifier.py [--force] [--warm-neural] [--database-url sqlite:///other.db]
"""

import argparse
import asyncio
import logging

import config
from models import TrainResult

LOG = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Train the transaction category classifier")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Retrain even if a saved model already exists.",
    )
    parser.add_argument(
        "--warm-neural",
        action="store_true",
        help="Also train (or load) the lifestyle and budget networks.",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="Override DATABASE_URL for this run.",
    )
    parser.add_argument(
        "--store",
        type=str,
        default=None,
        choices=["auto", "local", "s3", "sql", "memory"],
        help="Model store backend (defaults to MODEL_STORE_BACKEND).",
    )
    return parser.parse_args()


async def run(force: bool, warm_neural: bool, store_backend: str | None = None) -> TrainResult:
    # Imported here so --database-url is applied before the engine is created
    from budget_model import BudgetPredictionModel
    from classifier import TransactionClassifier
    from database import SqlCorpusProvider, init_db
    from lifestyle_model import LifestyleSignalModel
    from storage import get_store

    init_db()
    store = get_store(store_backend)

    classifier = TransactionClassifier(SqlCorpusProvider(), store)
    result = await classifier.train_model(force_retrain=force)
    await classifier.flush()

    if warm_neural:
        lifestyle = LifestyleSignalModel(store)
        await lifestyle.ensure_trained()
        await lifestyle.flush()

        budget = BudgetPredictionModel(store)
        await budget.initialize()
        await budget.flush()
        LOG.info("Neural models ready (budget history: %d epochs)", len(budget.get_training_history()))

    return result


def main() -> None:
    args = parse_args()
    if args.database_url:
        config.DB_URL = args.database_url
    config.configure_logging()

    result = asyncio.run(run(args.force, args.warm_neural, args.store))
    if result.success:
        print(result.message)
    else:
        print(f"Training failed: {result.message}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
