"""Interactive yes/no confirmation on the controlling terminal."""

from __future__ import annotations

from typing import Callable


def confirm(question: str, read: Callable[[str], str] = input) -> bool:
    """Ask ``question`` and return True only for an explicit yes.

    End of input (e.g. stdin redirected from /dev/null) counts as no.
    """
    try:
        answer = read(f"{question} (y/N): ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}
