"""Tests for splitting raw transcripts into timed segments."""

from __future__ import annotations

import pytest

from meeting_analysis.transcript_processor import (
    TranscriptProcessor,
    get_transcript_processor,
    reset_transcript_processor,
)


@pytest.fixture
def processor() -> TranscriptProcessor:
    return TranscriptProcessor()


class TestTimestampedTranscripts:
    def test_segments_speakers_and_timings(self, processor, transcript):
        processed = processor.process(transcript)

        assert processed.has_timestamps
        assert processed.has_speaker_names
        assert [s.start for s in processed.segments] == [5.0, 70.0, 150.0, 225.0]
        # Each timed segment runs until the next begins
        assert processed.segments[0].end == 70.0
        assert processed.segments[1].speaker == "Bob"
        assert processed.segments[1].text.startswith("We agreed")
        assert [s.name for s in processed.speakers] == ["Alice", "Bob", "Carol"]
        alice = processed.speakers[0]
        assert alice.segments_count == 2
        assert alice.id == "alice"

    def test_continuation_lines_join_the_current_segment(self, processor):
        processed = processor.process(
            "(0:10) Dana: First point\nthat carries on here.\n[0:40] Eli: Second point."
        )
        assert len(processed.segments) == 2
        assert processed.segments[0].text == "First point that carries on here."
        assert processed.segments[0].end == 40.0

    def test_clock_on_its_own_line_stamps_the_next_line(self, processor):
        processed = processor.process("[00:01:05]\nAlice: hello\n[00:01:30]\nBob: hi")
        assert processed.has_timestamps
        assert [(s.start, s.speaker, s.text) for s in processed.segments] == [
            (65.0, "Alice", "hello"), (90.0, "Bob", "hi"),
        ]

    def test_duration(self, processor, transcript):
        processed = processor.process(transcript)
        assert processed.duration == processed.segments[-1].end
        assert processed.duration > 225.0


class TestUntimedTranscripts:
    def test_blank_lines_split_paragraphs_and_times_are_estimated(self, processor):
        text = (
            "The team reviewed the roadmap for the next quarter.\n"
            "Several dependencies were flagged.\n"
            "\n"
            "Budget approval is still pending from finance."
        )
        processed = processor.process(text)

        assert not processed.has_timestamps
        assert not processed.has_speaker_names
        assert len(processed.segments) == 2
        first, second = processed.segments
        # 13 words at 150 words per minute
        assert first.start == 0.0
        assert first.end == pytest.approx(13 * 60 / 150)
        assert second.start == pytest.approx(first.end)

    def test_speaker_lines_without_clock(self, processor):
        processed = processor.process("Alice: Hello there.\nBob: Hi Alice.\n- Carol: Morning.")
        assert [s.speaker for s in processed.segments] == ["Alice", "Bob", "Carol"]
        assert processor.get_speaker_segments(processed, "bob")[0].text == "Hi Alice."


class TestHelpers:
    def test_load_from_file(self, processor, tmp_path):
        path = tmp_path / "meeting.txt"
        path.write_text("[00:00:01] Alice: Hello.\n", encoding="utf-8")
        processed = processor.load_from_file(path)
        assert processed.segments[0].start == 1.0

    def test_global_instance(self):
        first = get_transcript_processor()
        assert get_transcript_processor() is first
        reset_transcript_processor()
        assert get_transcript_processor() is not first
