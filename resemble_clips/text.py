"""Builds the emotion-tagged text body sent to the speech service."""
from enum import Enum
from typing import Iterable, Tuple, Union
from xml.sax.saxutils import escape


class Emotion(str, Enum):
    NEUTRAL = "Neutral"
    ANGRY = "Angry"
    ANNOYED = "Annoyed"
    QUESTION = "Question"
    CONFUSE = "Confuse"
    HAPPY = "Happy"

    def open_tag(self) -> str:
        return f'<style emotions="{self.value.lower()}">'

    def close_tag(self) -> str:
        return "</style>"


def parse_emotion(value: str) -> Emotion:
    """Case-insensitive lookup by name; anything unknown is neutral."""
    lowered = (value or "").strip().lower()
    for emotion in Emotion:
        if emotion.value.lower() == lowered:
            return emotion
    return Emotion.NEUTRAL


Segment = Union[str, Tuple[str, Union[Emotion, str]]]


def build_resemble_string(segments: Iterable[Segment]) -> str:
    """
    Joins text segments into a single request body.

    Each segment is either plain text or a `(text, emotion)` pair. Neutral
    segments are emitted untagged; others are wrapped in a style tag.
    """
    parts = []
    for segment in segments:
        if isinstance(segment, str):
            text, emotion = segment, Emotion.NEUTRAL
        else:
            text, emotion = segment
            if not isinstance(emotion, Emotion):
                emotion = parse_emotion(emotion)
        if not text:
            continue
        escaped = escape(text)
        if emotion == Emotion.NEUTRAL:
            parts.append(escaped)
        else:
            parts.append(f"{emotion.open_tag()}{escaped}{emotion.close_tag()}")
    return "".join(parts)
