"""
Change detection between two snapshots of the same competitor page
"""
import logging
from dataclasses import astuple
from typing import Optional

from config import config
from models import ChangeRecord, PageSnapshot

logger = logging.getLogger(__name__)


def detect_changes(previous: Optional[PageSnapshot], current: PageSnapshot,
                   link_tolerance: Optional[int] = None) -> ChangeRecord:
    """Compare a fresh snapshot with the stored one.

    A first observation (no previous snapshot) is the baseline and never
    counts as a change. Image count changes always count as structural;
    internal link count only when it moves by more than ``link_tolerance``,
    which absorbs per-load noise such as lazy widgets.
    """
    if previous is None:
        return ChangeRecord()

    if link_tolerance is None:
        link_tolerance = config.structure_link_tolerance

    headings_changed = (
        (previous.h1_tags, previous.h2_tags, previous.h3_tags)
        != (current.h1_tags, current.h2_tags, current.h3_tags)
    )
    structure_changed = (
        previous.image_count != current.image_count
        or abs(previous.internal_link_count - current.internal_link_count) > link_tolerance
    )

    return ChangeRecord(
        headings_changed=headings_changed,
        content_changed=previous.content_hash != current.content_hash,
        word_count_diff=current.word_count - previous.word_count,
        structure_changed=structure_changed
    )


def has_changes(changes: ChangeRecord) -> bool:
    """OR of every flag; the numeric diff counts when non-zero"""
    return any(bool(value) for value in astuple(changes))
