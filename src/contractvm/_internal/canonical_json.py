"""Canonical JSON serialization and loading for CLI/report output.

Byte-stable output: sorted keys, fixed separators, UTF-8 (no ASCII escaping).
"""

import json
from pathlib import Path
from typing import Any, Union


def canonical_dumps(obj: Any) -> str:
    """Canonical JSON serialization.

    Lists keep their order; callers are responsible for ordering them.
    """
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def load_json(path: Union[str, Path]) -> Any:
    """Load a UTF-8 JSON file."""
    return json.loads(Path(path).read_text(encoding="utf-8"))


def write_json(path: Union[str, Path], obj: Any) -> None:
    """Write ``obj`` as canonical JSON followed by a newline."""
    Path(path).write_text(canonical_dumps(obj) + "\n", encoding="utf-8")
