"""Extract changed line numbers from unified diff patches."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

HUNK_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")

DEFAULT_RADIUS = 2


@dataclass
class ChangedLineSet:
    """Lines touched by a patch (``core``) and the same set widened by a radius."""

    core: set[int] = field(default_factory=set)
    lines: set[int] = field(default_factory=set)

    def __bool__(self) -> bool:
        return bool(self.core)


def core_lines(patch: str) -> set[int]:
    """Return the new-file line numbers a patch touches.

    Added lines count at their own position. A deleted line marks the line
    that now sits where it was, so a pure deletion still has a location.
    Input that is not a unified diff yields an empty set.
    """
    core: set[int] = set()
    if not patch:
        return core

    new_line = 0
    old_left = 0
    new_left = 0
    for raw in patch.splitlines():
        m = HUNK_RE.match(raw)
        if m:
            old_left = int(m.group(2)) if m.group(2) is not None else 1
            new_line = int(m.group(3))
            new_left = int(m.group(4)) if m.group(4) is not None else 1
            continue
        if old_left <= 0 and new_left <= 0:
            # Outside a hunk: file headers, "diff --git" lines, noise.
            continue
        if raw.startswith("\\"):
            continue
        if raw.startswith("+"):
            core.add(new_line)
            new_line += 1
            new_left -= 1
        elif raw.startswith("-"):
            core.add(new_line)
            old_left -= 1
        else:
            new_line += 1
            new_left -= 1
            old_left -= 1

    return {n for n in core if n > 0}


def expand(lines: set[int], radius: int = DEFAULT_RADIUS) -> set[int]:
    out: set[int] = set()
    for n in lines:
        for d in range(-radius, radius + 1):
            if n + d > 0:
                out.add(n + d)
    return out


def changed_line_set(patch: str, radius: int = DEFAULT_RADIUS) -> ChangedLineSet:
    core = core_lines(patch)
    return ChangedLineSet(core=core, lines=expand(core, radius))
