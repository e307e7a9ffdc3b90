"""
Unit tests for the logging bootstrap.
"""

from __future__ import annotations

import logging

from transaction_analyzer.config import AnalysisConfig
from transaction_analyzer.logging_setup import (
    ROOT_LOGGER_NAME,
    configure_logging,
    get_logger,
)
from transaction_analyzer.pipeline import TransactionAnalysisPipeline


class TestGetLogger:
    def test_short_and_module_names_agree(self) -> None:
        assert get_logger("cache") is get_logger("transaction_analyzer.cache")
        assert get_logger("cache").name == "transaction_analyzer.cache"

    def test_children_share_namespace(self) -> None:
        assert get_logger("pipeline").parent is logging.getLogger(ROOT_LOGGER_NAME)


class TestConfigureLogging:
    def test_handlers_installed_once(self) -> None:
        configure_logging(logging.WARNING)
        root = logging.getLogger(ROOT_LOGGER_NAME)
        count = len(root.handlers)
        configure_logging(logging.WARNING)
        assert len(root.handlers) == count
        assert root.propagate is False

    def test_later_pipeline_level_applies(self) -> None:
        root = logging.getLogger(ROOT_LOGGER_NAME)
        try:
            TransactionAnalysisPipeline(AnalysisConfig(log_level=logging.WARNING))
            assert root.level == logging.WARNING

            TransactionAnalysisPipeline(AnalysisConfig(log_level=logging.DEBUG))
            assert root.level == logging.DEBUG
            assert all(h.level == logging.DEBUG for h in root.handlers)
        finally:
            configure_logging(logging.WARNING)
