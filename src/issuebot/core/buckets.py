"""Assign issues to label buckets.

Each issue lands in at most one bucket: the first tracked label, in priority
order, that it carries. Issues with no labels go to ``unlabeled`` when that
bucket is tracked. A full bucket silently skips further issues — there is no
backfill into a lower-priority label.
"""

from __future__ import annotations

from collections.abc import Iterable

from issuebot.core.labels import UNLABELED, LabelSet
from issuebot.models.issue import Issue


def assign_bucket(issue: Issue, labels: LabelSet) -> str | None:
    """Return the bucket ``issue`` belongs to, or None if it is not tracked."""
    names = issue.label_names
    if not names:
        return labels.canonical(UNLABELED)
    return labels.first_match(names)


def bucketize(
    issues: Iterable[Issue],
    labels: LabelSet,
    *,
    max_per_label: int,
) -> dict[str, list[Issue]]:
    """Group ``issues`` by bucket, keeping fetch order and capping each bucket.

    Every tracked label gets a key (possibly with an empty list), in priority
    order, so empty buckets still get their "no open issues" message.
    """
    buckets: dict[str, list[Issue]] = {label: [] for label in labels}
    for issue in issues:
        bucket = assign_bucket(issue, labels)
        if bucket is None:
            continue
        if len(buckets[bucket]) < max_per_label:
            buckets[bucket].append(issue)
    return buckets
