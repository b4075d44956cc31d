"""Tests for the stage-aware log formatter."""

import logging

from docmind.src.utils.logger import StageFormatter, get_logger


def make_record(msg, *args):
    return logging.LogRecord("docmind.test", logging.WARNING, __file__, 1, msg, args, None)


class TestStageFormatter:

    def test_leading_tag_becomes_stage_column(self):
        line = StageFormatter(fmt="%(stage)s|%(text)s").format(make_record("[FANOUT] %d branch(es) failed", 2))
        assert line == "FANOUT|2 branch(es) failed"

    def test_untagged_message_gets_placeholder(self):
        line = StageFormatter(fmt="%(stage)s|%(text)s").format(make_record("Starting ingestion"))
        assert line == "-|Starting ingestion"

    def test_tag_must_lead_the_message(self):
        line = StageFormatter(fmt="%(stage)s|%(text)s").format(make_record("see [EMBED] above"))
        assert line == "-|see [EMBED] above"


class TestGetLogger:

    def test_single_handler_and_no_propagation(self):
        first = get_logger("docmind.test.logger")
        second = get_logger("docmind.test.logger")

        assert first is second
        assert len(first.handlers) == 1
        assert isinstance(first.handlers[0].formatter, StageFormatter)
        assert first.propagate is False
