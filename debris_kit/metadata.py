from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional, Union


def load_class_names(metadata_path: Union[str, Path]) -> Dict[int, str]:
    """
    Load class names from a small `metadata.yaml` next to the model.

    Both forms written by common exporters are understood:

        names:
          0: debris
          1: satellite

        names:
          - debris
          - satellite

    Parsing is line-based; only the `names:` block is read.
    """

    names: Dict[int, str] = {}
    in_names = False
    next_index = 0

    with open(metadata_path, "r", encoding="utf-8") as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line == "names:":
                in_names = True
                continue
            if not in_names:
                continue
            # A new top-level key ends the block.
            if not raw[:1].isspace() and not line.startswith("-"):
                break

            if line.startswith("- "):
                names[next_index] = _unquote(line[2:])
                next_index += 1
                continue

            # Parse "id: label"
            if ":" not in line:
                continue
            left, right = line.split(":", 1)
            left = left.strip()
            if not left.isdigit():
                continue
            names[int(left)] = _unquote(right)

    return names


def _unquote(value: str) -> str:
    return value.strip().strip("'").strip('"')


def class_label(class_names: Optional[Dict[int, str]], class_id: Optional[int]) -> str:
    if class_id is None:
        return "object"
    if class_names:
        return class_names.get(class_id, str(class_id))
    return str(class_id)
