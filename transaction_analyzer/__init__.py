"""
Transaction Analyzer — Pattern Scanning and Duplicate Detection Engine.

Scans bank-statement style transaction descriptions for known merchant
and category keywords, and finds near-duplicate transactions with a
weighted fuzzy score over text, amount, date and category.

Every duplicate pair carries its score, the reasons that contributed and
a confidence tier, so nothing is flagged without an explanation.
"""

__version__ = "1.0.0"
__author__ = "Transaction Analyzer Team"

from transaction_analyzer.pipeline import TransactionAnalysisPipeline  # noqa: F401
