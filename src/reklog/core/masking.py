"""
Data masking for sensitive field redaction.

Runs on every body, query, header and response payload before a log
record leaves the process. Matching is by exact key name, case-insensitive.
"""

from collections.abc import Mapping
from typing import Any, FrozenSet, Iterable, Iterator, List, Optional, Set, Tuple

import structlog

logger = structlog.get_logger(__name__)

REDACTED = "********"
CIRCULAR = "[Circular]"


class MaskRuleSet:
    """
    Case-folded set of field names whose values are redacted.

    Keys are lower-cased once here so lookups during traversal are a
    single set membership test.
    """

    __slots__ = ("_keys",)

    def __init__(self, *key_groups: Optional[Iterable[str]]) -> None:
        keys: Set[str] = set()
        for group in key_groups:
            if group:
                keys.update(str(key).lower() for key in group)
        self._keys: FrozenSet[str] = frozenset(keys)

    @property
    def keys(self) -> FrozenSet[str]:
        return self._keys

    def matches(self, key: Any) -> bool:
        """Return True if values stored under key must be redacted."""
        return str(key).lower() in self._keys

    def __contains__(self, key: object) -> bool:
        return self.matches(key)

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self) -> Iterator[str]:
        return iter(self._keys)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, MaskRuleSet):
            return self._keys == other._keys
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._keys)

    def __repr__(self) -> str:
        return f"MaskRuleSet({sorted(self._keys)!r})"


def mask(value: Any, rules: MaskRuleSet) -> Any:
    """
    Return a masked copy of value.

    Mappings come back as new dicts, lists and tuples as new sequences of
    the same type; every other value is returned unchanged. A value stored
    under a key in rules is replaced by REDACTED whatever its type. The
    input is never mutated.

    Containers that reference themselves are replaced by CIRCULAR at the
    point where the cycle closes. Traversal uses an explicit stack, so
    nesting depth is not bounded by the interpreter's recursion limit.
    """
    root: List[Any] = [None]
    ancestors: Set[int] = set()
    stack: List[_Frame] = []

    _place(value, root, 0, ancestors, stack)

    while stack:
        frame = stack[-1]
        entry = next(frame.entries, _DONE)

        if entry is _DONE:
            stack.pop()
            ancestors.discard(id(frame.source))
            if isinstance(frame.source, tuple):
                frame.parent[frame.slot] = tuple(frame.output)
            else:
                frame.parent[frame.slot] = frame.output
            continue

        key, item = entry
        if isinstance(frame.output, dict):
            if rules.matches(key):
                frame.output[key] = REDACTED
                continue
            frame.output[key] = None
            slot = key
        else:
            frame.output.append(None)
            slot = len(frame.output) - 1

        _place(item, frame.output, slot, ancestors, stack)

    return root[0]


_DONE = object()


class _Frame:
    """A container being copied: its source, pending entries and output."""

    __slots__ = ("source", "entries", "output", "parent", "slot")

    def __init__(self, source: Any, entries: Iterator[Tuple[Any, Any]], output: Any, parent: Any, slot: Any) -> None:
        self.source = source
        self.entries = entries
        self.output = output
        self.parent = parent
        self.slot = slot


def _place(item: Any, parent: Any, slot: Any, ancestors: Set[int], stack: List[_Frame]) -> None:
    """Store a scalar into parent[slot], or push a frame for a container."""
    if not isinstance(item, (Mapping, list, tuple)):
        # Primitive value - return as-is
        parent[slot] = item
        return

    marker = id(item)
    if marker in ancestors:
        logger.debug("Circular reference replaced while masking", type=type(item).__name__)
        parent[slot] = CIRCULAR
        return

    ancestors.add(marker)
    if isinstance(item, Mapping):
        stack.append(_Frame(item, iter(item.items()), {}, parent, slot))
    else:
        stack.append(_Frame(item, enumerate(item), [], parent, slot))


def build_rule_set(baseline_keys: Iterable[str], extra_keys: Optional[Iterable[str]] = None) -> MaskRuleSet:
    """Merge the built-in keys with caller additions."""
    return MaskRuleSet(baseline_keys, extra_keys)
