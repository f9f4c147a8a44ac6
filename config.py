"""
config.py
---------

Runtime settings and tuning constants for the learning layer.

Settings are read from the environment (a ``.env`` file is honoured via
python-dotenv) so the same code runs against a local SQLite file during
development and a managed database / S3 bucket when deployed.
"""

import logging
import os

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# --- Environment ---

DB_URL = os.getenv("DATABASE_URL", "sqlite:///finance_tracker.db")
S3_BUCKET = os.getenv("S3_BUCKET")
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")
MODEL_STORE_DIR = os.getenv("MODEL_STORE_DIR", "personal_finance_tracker/model_store")
# 'auto' picks S3 when a bucket is configured, local files otherwise
MODEL_STORE_BACKEND = os.getenv("MODEL_STORE_BACKEND", "auto")
PERSIST_DEBOUNCE_SECONDS = float(os.getenv("PERSIST_DEBOUNCE_SECONDS", "0.5"))
LIFESTYLE_TRAIN_DELAY_SECONDS = float(os.getenv("LIFESTYLE_TRAIN_DELAY_SECONDS", "6"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# --- Transaction classifier ---

CORRECTION_WEIGHT = 3.0
TRANSACTION_WEIGHT = 1.0
MIN_CONFIDENCE = 0.05
BOOST_THRESHOLD = 0.5
BOOST_CAP = 0.1
BOOST_SLOPE = 0.01
CORRECTIONS_LIMIT = 500
TRANSACTIONS_LIMIT = 1000
MAX_VOCABULARY_SIZE = 3000
ACCURACY_SAMPLE_SIZE = 50
MAX_ALTERNATIVES = 3

CLASSIFIER_MODEL_KEY = "transaction_classifier_model"

# --- Lifestyle signal model ---

LIFESTYLE_MAX_VOCAB = 1500
LIFESTYLE_SEQUENCE_LENGTH = 18
LIFESTYLE_EMBEDDING_DIM = 32
LIFESTYLE_SYNTHETIC_SAMPLES = 700
LIFESTYLE_EPOCHS = 4
LIFESTYLE_BATCH_SIZE = 48

LIFESTYLE_MODEL_KEY = "lifestyle_signal_model_v1"

# Monthly rent prior (VND) by location, only used when the user rents
RENT_ESTIMATES = {
    "hanoi": 3_000_000,
    "hcm": 4_000_000,
    "other": 3_500_000,
}

# --- Budget prediction model ---

BUDGET_MODEL_VERSION = "1.0"
BUDGET_RULE_BASED_VERSION = "1.0-rule-based"
BUDGET_INPUT_DIM = 19
BUDGET_EPOCHS = 5
BUDGET_BATCH_SIZE = 32
BUDGET_VALIDATION_SPLIT = 0.2
BUDGET_LEARNING_RATE = 0.001
BUDGET_FINE_TUNE_LEARNING_RATE = 0.0001
BUDGET_FINE_TUNE_EPOCHS = 5

# Log scale: 1M -> 0.0, 100M -> 1.0
INCOME_FLOOR = 1_000_000
INCOME_CEILING = 100_000_000

# Tết, 30/4, Quốc Khánh, Noel
HOLIDAY_MONTHS = (1, 2, 4, 9, 12)

BUDGET_WEIGHTS_KEY = "budget_prediction_v1_weights"
BUDGET_HISTORY_KEY = "budget_prediction_v1_history"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for command-line and server entry points."""
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
