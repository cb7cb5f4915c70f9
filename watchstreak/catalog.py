"""Builds MediaItems for local files, guessing clean titles with guessit."""

import hashlib
import logging
import os
from typing import List

from guessit import guessit

from watchstreak.domain import MediaItem, MediaKind
from watchstreak.utils import get_media_files, is_audio_file

logger = logging.getLogger(__name__)


def media_id_for_path(path: str) -> str:
    """Stable id for a local file, derived from its absolute path."""
    return hashlib.sha1(os.path.abspath(path).encode('utf-8')).hexdigest()[:16]


def guess_title(path: str) -> str:
    """
    Guesses a display title from a file name.

    Episodes get an SxxEyy suffix. Falls back to the file name.
    """
    title = os.path.basename(path)
    try:
        guessed = guessit(path)
    except Exception as e:
        logger.warning("Error guessing title for %s: %s", path, e)
        return title

    if 'title' in guessed:
        title = str(guessed['title'])
    season, episode = guessed.get('season'), guessed.get('episode')
    if isinstance(season, list):
        season = season[0] if season else None
    if isinstance(episode, list):
        episode = episode[0] if episode else None
    if isinstance(season, int) and isinstance(episode, int):
        title = f"{title} S{season:02d}E{episode:02d}"
    elif isinstance(episode, int):
        title = f"{title} E{episode:02d}"
    logger.debug("Guessed title for %s: %s", path, title)
    return title


def media_item_from_path(path: str) -> MediaItem:
    kind = MediaKind.AUDIO if is_audio_file(path) else MediaKind.VIDEO
    return MediaItem(
        kind=kind,
        id=media_id_for_path(path),
        title=guess_title(path),
        source=os.path.abspath(path),
    )


def items_from_path(path: str) -> List[MediaItem]:
    """Returns one item for a file, or one per media file for a folder."""
    if os.path.isdir(path):
        return [media_item_from_path(p) for p in get_media_files(path)]
    if os.path.isfile(path):
        return [media_item_from_path(path)]
    return []
