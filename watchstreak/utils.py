import math
import os
from typing import List, Optional

VIDEO_EXTENSIONS = ('.mkv', '.mp4', '.avi', '.mov', '.webm', '.m4v')
AUDIO_EXTENSIONS = ('.mp3', '.m4a', '.aac', '.ogg', '.opus', '.flac', '.wav')


def get_media_files(path: str) -> List[str]:
    """
    Walks a folder and returns every playable file path, sorted.
    """
    media_files = []
    if os.path.isdir(path):
        for root, _, files in os.walk(path):
            for file in files:
                if file.lower().endswith(VIDEO_EXTENSIONS + AUDIO_EXTENSIONS):
                    media_files.append(os.path.join(root, file))
    return sorted(media_files)


def is_audio_file(path: str) -> bool:
    return path.lower().endswith(AUDIO_EXTENSIONS)


def format_seconds_to_human_readable(seconds: Optional[float]) -> str:
    """Formats seconds as e.g. "1h 25m 30s", rounding up and skipping zero units."""
    if seconds is None:
        return "N/A"

    minutes, secs = divmod(max(0, math.ceil(seconds)), 60)
    hours, minutes = divmod(minutes, 60)

    parts = [f"{value}{unit}" for value, unit in ((hours, "h"), (minutes, "m"), (secs, "s")) if value]
    return " ".join(parts) or "0s"
