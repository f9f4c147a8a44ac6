"""Personal Finance Tracker learning layer.

This package contains the on-device learning engines of the finance
tracker: a category classifier for transaction notes, a lifestyle signal
extractor and a budget ratio predictor.  See ``mcp_server.py`` and
``train_classifier.py`` for entry points.
"""
