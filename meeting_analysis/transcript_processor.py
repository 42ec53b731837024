"""
Transcript processor for splitting raw transcripts into timed segments.
"""

import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from loguru import logger

from meeting_analysis.models import ProcessedTranscript, Speaker, TranscriptSegment
from meeting_analysis.utils.timestamps import parse_timestamp

# Speaking rate used to estimate timings when the transcript carries none
WORDS_PER_MINUTE = 150


class TranscriptProcessor:
    """Process raw transcripts into segments with timings and speakers."""

    def __init__(self):
        # Leading clock, e.g. "[00:01:05]", "(1:05)" or "01:05 -"
        self.timestamp_pattern = re.compile(
            r'^[\[(]?((?:\d+:)?\d{1,2}:\d{2}(?:[.,]\d+)?)[\])]?\s*(?:[-–]\s*)?(.*)$'
        )
        self.speaker_patterns = [
            re.compile(r'^([A-Z][\w.\'-]*(?:\s+[A-Z][\w.\'-]*){0,2})\s*:\s*(.+)$'),  # Name: text
            re.compile(r'^\[([^\]]+)\]\s*(.+)$'),  # [Name] text
            re.compile(r'^[-•]\s*([A-Z][\w.\'-]*(?:\s+[A-Z][\w.\'-]*){0,2})\s*:\s*(.+)$'),  # - Name: text
        ]

    def process(self, raw_transcript: str) -> ProcessedTranscript:
        """
        Split a raw transcript into segments.

        Lines starting with a clock give segment starts; each segment ends
        where the next one starts. Untimed transcripts get timings estimated
        from word counts.

        Args:
            raw_transcript: The raw transcript text

        Returns:
            ProcessedTranscript object
        """
        logger.info("Processing transcript...")
        entries = self._parse_lines(raw_transcript.strip().split('\n'))
        has_timestamps = any(start is not None for start, _, _ in entries)
        segments = self._build_segments(entries, has_timestamps)
        speakers = self._speaker_stats(segments)

        processed = ProcessedTranscript(
            text=raw_transcript,
            segments=segments,
            speakers=speakers,
            has_speaker_names=bool(speakers),
            has_timestamps=has_timestamps,
        )
        logger.info(
            f"Processed transcript: {len(segments)} segments, {len(speakers)} speakers, "
            f"timestamps={'yes' if has_timestamps else 'estimated'}"
        )
        return processed

    def _split_speaker(self, line: str) -> Tuple[Optional[str], str]:
        for pattern in self.speaker_patterns:
            match = pattern.match(line)
            if match:
                return match.group(1).strip(), match.group(2).strip()
        return None, line

    def _parse_lines(self, lines: List[str]) -> List[Tuple[Optional[float], Optional[str], List[str]]]:
        """Group lines into (start, speaker, text_lines) entries."""
        entries: List[Tuple[Optional[float], Optional[str], List[str]]] = []
        for raw in lines:
            line = raw.strip()
            if not line:
                # Blank line closes the current paragraph
                if entries and entries[-1][2]:
                    entries.append((None, None, []))
                continue

            start = None
            match = self.timestamp_pattern.match(line)
            if match:
                start = parse_timestamp(match.group(1))
                line = match.group(2).strip()
            speaker, text = self._split_speaker(line) if line else (None, "")

            starts_new = start is not None or speaker is not None or not entries or not entries[-1][2]
            if starts_new:
                if entries and not entries[-1][2]:
                    # A clock on its own line stamps the next line of text
                    pending_start, pending_speaker, _ = entries.pop()
                    if start is None:
                        start = pending_start
                    if speaker is None:
                        speaker = pending_speaker
                entries.append((start, speaker, [text] if text else []))
            else:
                entries[-1][2].append(text)

        return [e for e in entries if e[2]]

    def _build_segments(self, entries, has_timestamps: bool) -> List[TranscriptSegment]:
        segments: List[TranscriptSegment] = []
        clock = 0.0
        for index, (start, speaker, text_lines) in enumerate(entries):
            text = ' '.join(text_lines)
            words = len(text.split())
            spoken = words * 60.0 / WORDS_PER_MINUTE
            if start is None:
                start = clock
            segments.append(TranscriptSegment(
                index=index, start=start, end=start + spoken, text=text, speaker=speaker
            ))
            clock = start + spoken

        if has_timestamps:
            # A timed segment runs until the next one begins
            for current, following in zip(segments, segments[1:]):
                if following.start > current.start:
                    current.end = following.start
        return segments

    def _speaker_stats(self, segments: List[TranscriptSegment]) -> List[Speaker]:
        speakers: Dict[str, Speaker] = {}
        for segment in segments:
            if not segment.speaker:
                continue
            if segment.speaker not in speakers:
                speakers[segment.speaker] = Speaker(
                    id=segment.speaker.lower().replace(' ', '_'),
                    name=segment.speaker,
                )
            speakers[segment.speaker].segments_count += 1
            speakers[segment.speaker].total_words += len(segment.text.split())
        return list(speakers.values())

    def load_from_file(self, filepath: Path) -> ProcessedTranscript:
        """Load and process a transcript from a file."""
        logger.info(f"Loading transcript from {filepath}")
        with open(filepath, 'r', encoding='utf-8') as f:
            content = f.read()
        return self.process(content)

    def get_speaker_segments(self, processed: ProcessedTranscript, speaker_name: str) -> List[TranscriptSegment]:
        """All segments spoken by `speaker_name` (case-insensitive)."""
        return [
            segment for segment in processed.segments
            if segment.speaker and segment.speaker.lower() == speaker_name.lower()
        ]


# Global processor instance
_processor: Optional[TranscriptProcessor] = None


def get_transcript_processor() -> TranscriptProcessor:
    """Get the global transcript processor instance."""
    global _processor
    if _processor is None:
        _processor = TranscriptProcessor()
    return _processor


def reset_transcript_processor():
    """Reset the global transcript processor instance."""
    global _processor
    _processor = None
