"""Tests for the dual-layer display resolver."""

from __future__ import annotations

import pytest

from captureq.tasks.display import (
    EMPTY_PLACEHOLDER,
    FAILED_PLACEHOLDER,
    PENDING_PLACEHOLDER,
    PROCESSING_PLACEHOLDER,
    resolve,
)
from captureq.tasks.models import ProcessingStatus as S

RAW = "um so remind me to call the dentist tomorrow about moving the cleaning"
SUMMARY = "Call the dentist to reschedule the cleaning."


class TestPlaceholders:
    def test_failed_shows_placeholder_with_expand(self, make_item):
        state = resolve(make_item(processing_status=S.FAILED, raw_content=RAW))

        assert state.display_text == FAILED_PLACEHOLDER
        assert state.show_expand_indicator is True
        assert state.raw_content == RAW

    def test_pending_has_no_expand(self, make_item):
        state = resolve(
            make_item(
                processing_status=S.PENDING,
                title="",
                pending_audio_path="/audio/1.m4a",
                raw_content="x" * 300,
            )
        )

        assert state.display_text == PENDING_PLACEHOLDER
        assert state.show_expand_indicator is False
        assert state.is_pending is True
        assert state.is_empty is False

    def test_processing_placeholder(self, make_item):
        state = resolve(make_item(processing_status=S.PROCESSING, title=""))

        assert state.display_text == PROCESSING_PLACEHOLDER
        assert state.show_expand_indicator is False


class TestTranscribed:
    def test_first_line_of_raw_content(self, make_item):
        state = resolve(make_item(processing_status=S.TRANSCRIBED, raw_content="first line\nsecond line"))

        assert state.display_text == "first line"
        assert state.show_expand_indicator is False

    def test_long_first_line_truncated_to_80(self, make_item):
        state = resolve(make_item(processing_status=S.TRANSCRIBED, raw_content="word " * 40))

        assert len(state.display_text) == 80
        assert state.display_text.endswith("...")
        assert state.show_expand_indicator is False

    def test_blank_transcript_falls_back_to_title(self, make_item):
        state = resolve(
            make_item(
                processing_status=S.TRANSCRIBED,
                raw_content="  \n ",
                title="Voice note",
                pending_audio_path="/a.m4a",
            )
        )

        assert state.display_text == "Voice note"

    def test_blank_transcript_without_title_shows_placeholder(self, make_item):
        state = resolve(
            make_item(processing_status=S.TRANSCRIBED, raw_content="   ", title="", pending_audio_path="/a.m4a")
        )

        assert state.display_text == EMPTY_PLACEHOLDER
        assert state.is_empty is False


class TestSummaryLayer:
    def test_confident_summary_is_displayed(self, make_item):
        state = resolve(
            make_item(
                processing_status=S.INDEXED,
                raw_content=RAW,
                ai_summary=SUMMARY,
                ai_confidence=0.92,
            )
        )

        assert state.display_text == SUMMARY
        assert state.raw_content == RAW
        assert state.has_ai_summary is True
        assert state.has_dual_layer is True
        assert state.show_expand_indicator is True

    @pytest.mark.parametrize("status", [S.SUMMARIZED, S.INDEXED, S.COMPLETED, S.NONE])
    def test_low_confidence_falls_back_to_raw(self, make_item, status):
        state = resolve(
            make_item(
                processing_status=status,
                raw_content=RAW,
                ai_summary=SUMMARY,
                ai_confidence=0.3,
            )
        )

        assert state.low_confidence is True
        assert state.display_text == RAW
        assert state.display_text != SUMMARY

    def test_missing_confidence_counts_as_confident(self, make_item):
        state = resolve(make_item(processing_status=S.SUMMARIZED, raw_content=RAW, ai_summary=SUMMARY))

        assert state.display_text == SUMMARY
        assert state.confidence == 1.0

    def test_summary_equal_to_raw_is_not_dual_layer(self, make_item):
        state = resolve(
            make_item(processing_status=S.INDEXED, raw_content="Buy milk", ai_summary="Buy milk")
        )

        assert state.has_dual_layer is False
        assert state.show_expand_indicator is False

    def test_title_used_when_no_raw_content(self, make_item):
        state = resolve(make_item(processing_status=S.NONE, title="Water plants"))

        assert state.display_text == "Water plants"
        assert state.raw_content is None
        assert state.show_expand_indicator is False


class TestLongAndEmpty:
    def test_long_raw_entry_shows_expand(self, make_item):
        state = resolve(make_item(processing_status=S.NONE, title="Notes", raw_content="n" * 150))

        assert state.is_long_entry is True
        assert state.show_expand_indicator is True

    def test_empty_capture(self, make_item):
        state = resolve(make_item(processing_status=S.NONE, title="   "))

        assert state.is_empty is True
        assert state.display_text == EMPTY_PLACEHOLDER
        assert state.show_expand_indicator is False

    def test_audio_reference_is_not_empty(self, make_item):
        state = resolve(make_item(processing_status=S.FAILED, title="", pending_audio_path="/a.m4a"))

        assert state.is_empty is False


class TestTotality:
    def test_never_raises_on_broken_item(self, make_item):
        item = make_item()
        # Bypass validation to simulate a corrupted record
        object.__setattr__(item, "title", None)
        object.__setattr__(item, "raw_content", 42)

        state = resolve(item)

        assert state.display_text == EMPTY_PLACEHOLDER
        assert state.is_empty is True

    @pytest.mark.parametrize("status", list(S))
    @pytest.mark.parametrize("confidence", [None, 0.0, 0.59, 0.6, 1.0])
    def test_every_status_resolves(self, make_item, status, confidence):
        state = resolve(
            make_item(
                processing_status=status,
                raw_content=RAW,
                ai_summary=SUMMARY,
                ai_confidence=confidence,
            )
        )

        assert state.display_text
        if status == S.PENDING:
            assert state.show_expand_indicator is False
        if confidence is not None and confidence < 0.6:
            assert state.display_text != SUMMARY

    def test_to_dict_is_json_ready(self, make_item):
        data = resolve(make_item(processing_status=S.INDEXED)).to_dict()

        assert data["processing_status"] == "indexed"
        assert set(data) >= {
            "display_text",
            "raw_content",
            "has_dual_layer",
            "is_long_entry",
            "low_confidence",
            "show_expand_indicator",
            "is_empty",
        }
