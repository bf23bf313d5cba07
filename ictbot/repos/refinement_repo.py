"""Refinement repository — adjustment history and the skip list."""

import pathlib

from ictbot.repos.json_store import read_json, write_json

REFINEMENTS_FILE = "refinements.json"


class RefinementRepo:
    """Load and save ``refinements.json`` as ``{adjustment_history, skip_combos}``."""

    def __init__(self, state_dir: str) -> None:
        self._path = pathlib.Path(state_dir) / REFINEMENTS_FILE

    def load(self) -> tuple[list[dict], list[str]]:
        """Return ``(adjustment_history, skip_combos)``; both empty when nothing is stored."""
        data = read_json(self._path, default={})
        return list(data.get("adjustment_history", [])), list(data.get("skip_combos", []))

    def save(self, adjustment_history: list[dict], skip_combos: list[str]) -> None:
        write_json(
            self._path,
            {"adjustment_history": adjustment_history, "skip_combos": skip_combos},
        )

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)
