"""Prerequisite graph over learning content.

The graph is validated when content is ingested, so scheduling code can rely
on it being a DAG with no dangling prerequisite references.
"""

import logging
from collections import defaultdict
from typing import Iterable

from .exceptions import ContentCycleError, UnknownContentError, ValidationError
from .models import LearningContent

logger = logging.getLogger(__name__)


def next_teachable(
    unlearned: Iterable[LearningContent], completed: Iterable[str]
) -> list[LearningContent]:
    """Unlearned items that can be taught in order, each after its prerequisites.

    Items are visited in the given (catalog) order; an item becomes teachable
    once all its prerequisites are completed or appear earlier in the result.
    """
    satisfied = set(completed)
    teachable = []
    for content in unlearned:
        if content.id in satisfied:
            continue
        if all(p in satisfied for p in content.prerequisites):
            teachable.append(content)
            satisfied.add(content.id)
    return teachable


def fit_to_session(content: Iterable[LearningContent], minutes: int) -> list[LearningContent]:
    """Longest prefix of ``content`` that fits in a session (at least one item)."""
    planned = []
    used = 0
    for item in content:
        if planned and used + item.estimated_duration > minutes:
            break
        planned.append(item)
        used += item.estimated_duration
    return planned


class PrerequisiteGraph:
    """Directed acyclic graph of content prerequisites.

    Edges point from a prerequisite to the content that requires it.
    """

    def __init__(self, contents: Iterable[LearningContent]):
        self._contents: dict[str, LearningContent] = {}
        for content in contents:
            if content.id in self._contents:
                raise ValidationError(f"Duplicate content ID '{content.id}'")
            self._contents[content.id] = content

        self._dependents: dict[str, list[str]] = defaultdict(list)
        for content in self._contents.values():
            for prereq in content.prerequisites:
                if prereq not in self._contents:
                    raise UnknownContentError(prereq, referenced_by=content.id)
                self._dependents[prereq].append(content.id)

        self._order = self._topological_sort()
        logger.debug(f"Prerequisite graph built with {len(self._contents)} items")

    def __contains__(self, content_id: str) -> bool:
        return content_id in self._contents

    def __len__(self) -> int:
        return len(self._contents)

    def get(self, content_id: str) -> LearningContent:
        try:
            return self._contents[content_id]
        except KeyError:
            raise UnknownContentError(content_id) from None

    @property
    def contents(self) -> list[LearningContent]:
        return [self._contents[cid] for cid in self._order]

    def _topological_sort(self) -> list[str]:
        """Kahn's algorithm with catalog order as the tie-break."""
        in_degree = {cid: len(c.prerequisites) for cid, c in self._contents.items()}
        ready = sorted(
            (self._contents[cid] for cid, deg in in_degree.items() if deg == 0),
            key=lambda c: c.sort_key,
        )
        order: list[str] = []
        while ready:
            current = ready.pop(0)
            order.append(current.id)
            released = []
            for dependent in self._dependents.get(current.id, []):
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    released.append(self._contents[dependent])
            if released:
                ready = sorted(ready + released, key=lambda c: c.sort_key)

        if len(order) != len(self._contents):
            raise ContentCycleError(self._find_cycle({cid for cid, d in in_degree.items() if d > 0}))
        return order

    def _find_cycle(self, remaining: set[str]) -> list[str]:
        """Walk prerequisite edges inside the unsorted remainder until a node repeats."""
        start = min(remaining)
        path: list[str] = []
        seen: dict[str, int] = {}
        current = start
        while current not in seen:
            seen[current] = len(path)
            path.append(current)
            current = next(
                p for p in sorted(self._contents[current].prerequisites) if p in remaining
            )
        return path[seen[current]:] + [current]

    def topological_order(self) -> list[str]:
        """Content IDs with every prerequisite before its dependents."""
        return list(self._order)

    def prerequisite_closure(self, content_id: str) -> set[str]:
        """All direct and transitive prerequisites of a content item."""
        closure: set[str] = set()
        stack = list(self.get(content_id).prerequisites)
        while stack:
            prereq = stack.pop()
            if prereq in closure:
                continue
            closure.add(prereq)
            stack.extend(self._contents[prereq].prerequisites)
        return closure

    def missing_prerequisites(
        self, content_id: str, satisfied: Iterable[str]
    ) -> list[str]:
        """Direct prerequisites of an item that are not in ``satisfied``."""
        satisfied = set(satisfied)
        return [p for p in self.get(content_id).prerequisites if p not in satisfied]

    def next_available(
        self, completed: Iterable[str], candidates: Iterable[str] | None = None
    ) -> list[LearningContent]:
        """Uncompleted items whose prerequisites are all completed, in graph order.

        Args:
            completed: Content IDs the student has completed
            candidates: Restrict the result to these IDs (e.g. unlearned content)

        Returns:
            Content items ready to be taught next
        """
        completed = set(completed)
        allowed = set(candidates) if candidates is not None else None
        ready = []
        for cid in self._order:
            if cid in completed or (allowed is not None and cid not in allowed):
                continue
            if all(p in completed for p in self._contents[cid].prerequisites):
                ready.append(self._contents[cid])
        return ready
