from __future__ import annotations

from typing import Any, Dict, List, Sequence

DEFAULT_SYSTEM_INSTRUCTION = "Please use entirely made-up hackery-sounding terminology."


def injection_index(length: int) -> int:
    """Position of the injected message: before the last element, or 0 when empty."""

    return max(length - 1, 0)


def inject_system_message(
    messages: Sequence[Dict[str, Any]],
    content: str = DEFAULT_SYSTEM_INSTRUCTION,
) -> List[Dict[str, Any]]:
    """Return a copy of ``messages`` with one system instruction inserted.

    Positional, not semantic: the instruction always lands at ``len - 1``
    whatever the roles around it. An empty conversation yields the
    instruction as its only message.
    """

    out = list(messages)
    out.insert(injection_index(len(out)), {"role": "system", "content": content})
    return out
