"""
פענוח WebVTT לקטעי דוברים.

Zoom ו-Teams מחזירים תמלול בפורמט VTT שבו כל cue נראה כך:

    00:00:01.000 --> 00:00:04.500
    Jane Doe: Hello everyone

קטעים רצופים של אותו דובר (פער קטן מ-2 שניות) מתמזגים. זמנים במילישניות.
"""
import re
from dataclasses import dataclass, field
from typing import Any

_TIMESTAMP_LINE = re.compile(
    r"(\d{1,2}:\d{2}(?::\d{2})?(?:\.\d{3})?)\s*-->\s*(\d{1,2}:\d{2}(?::\d{2})?(?:\.\d{3})?)"
)
_SPEAKER_PREFIX = re.compile(r"^([^:]+):\s*(.*)$", re.DOTALL)
_HTML_TAG = re.compile(r"<[^>]*>")
_CUE_NUMBER = re.compile(r"^\d+$")

UNKNOWN_SPEAKER = "Unknown"
MERGE_GAP_MS = 2000


@dataclass
class SpeakerSegment:
    speaker: str
    start_time: int
    end_time: int
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "speaker": self.speaker,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "text": self.text,
        }


@dataclass
class ParsedTranscript:
    full_text: str
    segments: list[SpeakerSegment] = field(default_factory=list)
    word_count: int = 0


def parse_timestamp(timestamp: str) -> int:
    """HH:MM:SS.mmm או MM:SS.mmm → מילישניות"""
    parts = timestamp.strip().split(":")
    hours, minutes, seconds = 0, 0, 0.0
    if len(parts) == 3:
        hours, minutes, seconds = int(parts[0]), int(parts[1]), float(parts[2])
    elif len(parts) == 2:
        minutes, seconds = int(parts[0]), float(parts[1])
    return round((hours * 3600 + minutes * 60 + seconds) * 1000)


def extract_speaker(text: str) -> tuple[str, str]:
    match = _SPEAKER_PREFIX.match(text)
    if match:
        return match.group(1).strip(), match.group(2).strip()
    return UNKNOWN_SPEAKER, text.strip()


def merge_consecutive_segments(segments: list[SpeakerSegment]) -> list[SpeakerSegment]:
    if not segments:
        return []

    merged: list[SpeakerSegment] = []
    current = SpeakerSegment(**segments[0].to_dict())
    for nxt in segments[1:]:
        if nxt.speaker == current.speaker and nxt.start_time - current.end_time < MERGE_GAP_MS:
            current.text = f"{current.text} {nxt.text}"
            current.end_time = nxt.end_time
        else:
            merged.append(current)
            current = SpeakerSegment(**nxt.to_dict())
    merged.append(current)
    return merged


def count_words(text: str) -> int:
    return len(text.split())


def build_transcript(segments: list[SpeakerSegment]) -> ParsedTranscript:
    """טקסט מלא ("Speaker: text" מופרדים בשורה ריקה) + ספירת מילים"""
    full_text = "\n\n".join(f"{seg.speaker}: {seg.text}" for seg in segments)
    return ParsedTranscript(
        full_text=full_text,
        segments=segments,
        word_count=count_words(full_text),
    )


def parse_vtt(vtt_content: str) -> ParsedTranscript:
    segments: list[SpeakerSegment] = []
    cue_times: tuple[int, int] | None = None
    text_buffer: list[str] = []

    def flush() -> None:
        if cue_times is not None and text_buffer:
            speaker, content = extract_speaker(" ".join(text_buffer))
            segments.append(SpeakerSegment(speaker, cue_times[0], cue_times[1], content))
        text_buffer.clear()

    for raw_line in vtt_content.splitlines():
        line = raw_line.strip()

        if not line or line == "WEBVTT" or line.startswith("NOTE"):
            flush()
            cue_times = None
            continue

        match = _TIMESTAMP_LINE.search(line)
        if match:
            flush()
            cue_times = (parse_timestamp(match.group(1)), parse_timestamp(match.group(2)))
            continue

        if _CUE_NUMBER.match(line) or "-->" in line:
            continue

        if cue_times is not None:
            clean = _HTML_TAG.sub("", line).strip()
            if clean:
                text_buffer.append(clean)

    flush()
    return build_transcript(merge_consecutive_segments(segments))
