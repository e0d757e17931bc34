"""Label resolution — which labels get a summary message, and in what priority.

``LabelSet`` is the one place label names are compared. It keeps the display
casing GitHub returned (used in URLs and embeds) and looks names up by their
lowercase key, so callers never lowercase ad hoc.

Resolution rules:
1. If an include list is configured, walk it in order and keep the labels
   that exist on GitHub, using GitHub's casing. Missing ones are skipped.
2. Otherwise take every repository label in GitHub's order, minus excludes.
3. If unlabeled tracking is on, append the synthetic ``unlabeled`` bucket last.

When GitHub cannot be reached, ``fallback_labels`` trusts the include list
verbatim so the guild still has a usable (possibly empty) label set.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence

UNLABELED = "unlabeled"


def label_key(name: str) -> str:
    """Normalized lookup key for a label name."""
    return name.lower()


class LabelSet:
    """Ordered, case-insensitive set of tracked labels.

    Iteration order is priority order. Duplicate names (ignoring case) keep
    the first spelling seen.
    """

    def __init__(self, names: Iterable[str] = ()) -> None:
        self._display: dict[str, str] = {}
        for name in names:
            key = label_key(name)
            if key not in self._display:
                self._display[key] = name

    @property
    def priority(self) -> list[str]:
        return list(self._display.values())

    @property
    def tracks_unlabeled(self) -> bool:
        return UNLABELED in self._display

    def canonical(self, name: str) -> str | None:
        """Return the tracked display name for ``name`` in any casing, or None."""
        return self._display.get(label_key(name))

    def first_match(self, names: Sequence[str]) -> str | None:
        """Return the highest-priority tracked label carried in ``names``."""
        keys = {label_key(name) for name in names}
        for key, display in self._display.items():
            if key in keys:
                return display
        return None

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and label_key(name) in self._display

    def __iter__(self) -> Iterator[str]:
        return iter(self._display.values())

    def __len__(self) -> int:
        return len(self._display)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LabelSet):
            return NotImplemented
        return self.priority == other.priority

    def __repr__(self) -> str:
        return f"LabelSet({self.priority!r})"


def resolve_labels(
    repo_labels: Sequence[str],
    *,
    included: Sequence[str],
    excluded: Sequence[str],
    track_unlabeled: bool,
) -> LabelSet:
    """Derive the tracked labels and their priority from the repository's labels."""
    repo = LabelSet(repo_labels)
    if included:
        names = [name for name in (repo.canonical(entry) for entry in included) if name]
    else:
        skip = LabelSet(excluded)
        names = [name for name in repo if name not in skip]
    return _with_unlabeled(names, track_unlabeled)


def fallback_labels(*, included: Sequence[str], track_unlabeled: bool) -> LabelSet:
    """Label set used when the repository's labels could not be fetched."""
    return _with_unlabeled(list(included), track_unlabeled)


def _with_unlabeled(names: list[str], track_unlabeled: bool) -> LabelSet:
    if track_unlabeled:
        # Drop any earlier spelling so the synthetic bucket always sorts last.
        names = [name for name in names if label_key(name) != UNLABELED]
        names.append(UNLABELED)
    return LabelSet(names)
