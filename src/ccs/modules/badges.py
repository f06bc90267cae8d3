"""Line-count badges — classify a count against the thresholds in effect.

Consumers (file explorer decorations, report tables) take a resolved
directory and a line count and ask which emoji to show.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import structlog

from ccs.core.models import SettingField
from ccs.core.resolver import Resolution

logger = structlog.get_logger()

Level = Literal["normal", "warning", "danger"]

# Used when the configured high threshold is not above the mid threshold.
_MIN_THRESHOLD_GAP = 100

_FILE_EMOJI_FIELDS: dict[str, SettingField] = {
    "normal": SettingField.EMOJI_NORMAL,
    "warning": SettingField.EMOJI_WARNING,
    "danger": SettingField.EMOJI_DANGER,
}
_FOLDER_EMOJI_FIELDS: dict[str, SettingField] = {
    "normal": SettingField.FOLDER_EMOJI_NORMAL,
    "warning": SettingField.FOLDER_EMOJI_WARNING,
    "danger": SettingField.FOLDER_EMOJI_DANGER,
}


@dataclass(frozen=True)
class ThresholdConfig:
    mid: int
    high: int


def threshold_config(resolution: Resolution) -> ThresholdConfig:
    """Thresholds in effect for ``resolution.directory``.

    A high threshold that is not above the mid threshold is replaced by
    ``mid + 100`` (with a warning) rather than rejected, so a half-edited
    pair of overrides still produces usable badges.
    """
    mid = resolution[SettingField.MID_THRESHOLD]
    high = resolution[SettingField.HIGH_THRESHOLD]
    if high <= mid:
        adjusted = mid + _MIN_THRESHOLD_GAP
        logger.warning(
            "threshold_adjusted",
            directory=resolution.directory,
            mid=mid,
            high=high,
            using=adjusted,
        )
        high = adjusted
    return ThresholdConfig(mid=mid, high=high)


def classify(lines: int, config: ThresholdConfig) -> Level:
    if lines >= config.high:
        return "danger"
    if lines >= config.mid:
        return "warning"
    return "normal"


def file_emoji(resolution: Resolution, lines: int) -> str:
    level = classify(lines, threshold_config(resolution))
    return resolution[_FILE_EMOJI_FIELDS[level]]


def folder_emoji(resolution: Resolution, lines: int) -> str:
    level = classify(lines, threshold_config(resolution))
    return resolution[_FOLDER_EMOJI_FIELDS[level]]


def format_line_count(lines: int) -> str:
    """Compact count for badges: ``999L``, ``1.5kL``, ``2.0ML``."""
    if lines < 1000:
        return f"{lines}L"
    if lines < 1_000_000:
        return f"{lines / 1000:.1f}kL"
    return f"{lines / 1_000_000:.1f}ML"
