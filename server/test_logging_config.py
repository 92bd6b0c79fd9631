"""Tests for structured logging formatters and context propagation."""

import json
import logging

from logging_config import (
    DevelopmentFormatter,
    JSONFormatter,
    connection_id_var,
    get_logger,
    set_log_context,
)


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("handlers", logging.INFO, __file__, 1, "Card played", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:

    def test_basic_fields(self):
        data = json.loads(JSONFormatter().format(make_record()))
        assert data["level"] == "INFO"
        assert data["logger"] == "handlers"
        assert data["message"] == "Card played"

    def test_extra_context(self):
        data = json.loads(JSONFormatter().format(make_record(game_id="game_ab12", player_id="9f3c")))
        assert data["game_id"] == "game_ab12"
        assert data["player_id"] == "9f3c"

    def test_context_var(self):
        token = connection_id_var.set("conn_1")
        try:
            data = json.loads(JSONFormatter().format(make_record()))
        finally:
            connection_id_var.reset(token)
        assert data["connection_id"] == "conn_1"


class TestDevelopmentFormatter:

    def test_short_context_names(self):
        output = DevelopmentFormatter().format(make_record(game_id="game_ab12"))
        assert "game=game_ab12" in output
        assert output.endswith("Card played")


class TestContextLogger:

    def test_with_context_merges_extra(self, caplog):
        logger = get_logger("test_context").with_context(game_id="game_1")
        with caplog.at_level(logging.INFO, logger="test_context"):
            logger.with_context(player_id="p1").info("hello")

        record = caplog.records[-1]
        assert record.game_id == "game_1"
        assert record.player_id == "p1"


class TestSetLogContext:

    def test_sets_and_clears_game_and_player(self):
        set_log_context("game_ab12", "9f3c")
        try:
            data = json.loads(JSONFormatter().format(make_record()))
            assert data["game_id"] == "game_ab12"
            assert data["player_id"] == "9f3c"
        finally:
            set_log_context(None, None)

        data = json.loads(JSONFormatter().format(make_record()))
        assert "game_id" not in data
        assert "player_id" not in data
