"""Tag-based document numbering.

Supported tags:
  [YYYY]    4-digit year
  [YY]      2-digit year
  [MM]      month (01-12)
  [DD]      day (01-31)
  [C+]      counter; number of C's = minimum digit width

Everything outside brackets is literal text.
Example: ``INV-[YY][MM]-[CCCC]`` -> ``INV-2610-0001``

Counters live in ``number_sequence`` per owner and entity type.  They run
on across months; the date tags only label the number.
"""

from __future__ import annotations

import datetime
import re
from typing import Callable, Optional

from extensions import db
from models import NumberSequence

_TAG_RE = re.compile(r"\[([A-Z]+)\]")

INVOICE_PATTERN = "[YY][MM]-[CCCC]"


def next_sequence(
    user_id: int,
    entity_type: str,
    scope_key: str = "",
    seed: Optional[Callable[[], int]] = None,
) -> int:
    """Atomically increment and return the owner's next counter value.

    On first use the counter starts after ``seed()``, so existing rows
    keep their numbers.
    """
    seq = NumberSequence.query.filter_by(
        user_id=user_id, entity_type=entity_type, scope_key=scope_key
    ).with_for_update().first()
    if not seq:
        start = (seed() if seed else 0) + 1
        seq = NumberSequence(
            user_id=user_id,
            entity_type=entity_type,
            scope_key=scope_key,
            last_value=start,
        )
        db.session.add(seq)
        db.session.flush()
        return start
    seq.last_value = NumberSequence.last_value + 1
    db.session.flush()
    db.session.refresh(seq)
    return seq.last_value


def format_number(pattern: str, counter: int, now: Optional[datetime.datetime] = None) -> str:
    """Expand the tags of *pattern* for *counter* at *now*."""
    now = now or datetime.datetime.now()

    def _expand(match: re.Match) -> str:
        tag = match.group(1)
        if tag == "YYYY":
            return str(now.year)
        if tag == "YY":
            return f"{now.year % 100:02d}"
        if tag == "MM":
            return f"{now.month:02d}"
        if tag == "DD":
            return f"{now.day:02d}"
        if set(tag) == {"C"}:
            return str(counter).zfill(len(tag))
        # Unknown tag stays literal
        return match.group(0)

    return _TAG_RE.sub(_expand, pattern)


def generate_number(
    user_id: int,
    entity_type: str,
    prefix: str,
    pattern: str = INVOICE_PATTERN,
    *,
    seed: Optional[Callable[[], int]] = None,
    now: Optional[datetime.datetime] = None,
) -> str:
    """Allocate the next number, e.g. ``INV-2610-0007``.

    *prefix* is literal; it is joined to the expanded pattern with ``-``.
    """
    counter = next_sequence(user_id, entity_type, seed=seed)
    body = format_number(pattern, counter, now)
    return f"{prefix}-{body}" if prefix else body
