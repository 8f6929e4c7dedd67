#!/usr/bin/env python3
"""
Tests for hierarchical logger levels and feature flags
"""

from __future__ import annotations

import logging

from wpchat.main import _configure_advanced_logging, _on_logging_config_change
from wpchat.stream.logging_utils import should_log_feature, truncate


def test_module_levels_applied_to_parent_loggers():
    _configure_advanced_logging(
        {
            "level": "ERROR",
            "modules": {
                "stream": {"level": "DEBUG"},
                "clients": {"level": "WARNING"},
                "mcp": {},
            },
        }
    )

    assert logging.getLogger().level == logging.ERROR
    assert logging.getLogger("wpchat.stream").level == logging.DEBUG
    # children inherit from the configured parent
    assert logging.getLogger("wpchat.stream.session").getEffectiveLevel() == logging.DEBUG
    assert logging.getLogger("wpchat.clients").level == logging.WARNING
    # no explicit level: the module default applies
    assert logging.getLogger("wpchat.clients.mcp_bridge").level == logging.INFO


def test_feature_flags():
    _configure_advanced_logging(
        {
            "modules": {
                "stream": {"enable_features": {"records": True, "artifacts": False}},
                "clients": {"enable_features": {"http_requests": True}},
            }
        }
    )

    assert should_log_feature("stream", "records")
    assert not should_log_feature("stream", "artifacts")
    assert should_log_feature("clients", "http_requests")
    assert not should_log_feature("stream", "tool_events")
    assert not should_log_feature("history", "anything")


def test_config_change_reconfigures_logging():
    _on_logging_config_change({"logging": {"modules": {"stream": {"enable_features": {"tool_events": True}}}}})
    assert should_log_feature("stream", "tool_events")

    _on_logging_config_change({"logging": {"modules": {"stream": {"enable_features": {}}}}})
    assert not should_log_feature("stream", "tool_events")


def test_truncate():
    assert truncate("short") == "short"
    assert truncate("x" * 10, length=4) == "xxxx..."


if __name__ == "__main__":
    test_module_levels_applied_to_parent_loggers()
    test_feature_flags()
    test_config_change_reconfigures_logging()
    test_truncate()
    print("✅ logging tests passed")
