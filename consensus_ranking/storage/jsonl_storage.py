"""
JSONL storage implementation.

Persists append-only logs (pairs, screens, decisions) to JSONL files and
replaceable state (latent vectors, exposure, unknown items) to JSON files,
one directory per rater.
"""

import json
import os
import tempfile
import threading
import typing
from collections.abc import Iterable, Iterator, Sequence
from pathlib import Path
from typing import Any

from typing_extensions import override

from ..exceptions import ValidationError
from ..group_selectors.adaptive_selector import combination_key
from ..interfaces import LatentVectorBlob, Repository
from ..logging_config import get_logger
from ..models import Decision, ExposureStat, PairObservation, RaterProfile, Screen

# Module-level logger
logger = get_logger("jsonl_storage")


class JSONLStorage(Repository):
    """
    File-based repository.

    Layout under root_dir:
        items.json, raters.json
        raters/<rater_id>/latent_vector.json   (replaced atomically)
        raters/<rater_id>/exposure.json, unknown.json
        raters/<rater_id>/pairs.jsonl, screens.jsonl, decisions.jsonl   (append-only)
    """

    root_dir: Path

    def __init__(self, root_dir: Path | str):
        """
        Initialize JSONL storage.

        Args:
            root_dir: Directory holding all files (created if missing)
        """
        self.root_dir = Path(root_dir)
        self.root_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

        logger.info(f"JSONL storage initialized at {self.root_dir}")

    # Paths and low-level helpers

    @property
    def items_path(self) -> Path:
        return self.root_dir / "items.json"

    @property
    def raters_path(self) -> Path:
        return self.root_dir / "raters.json"

    def _rater_dir(self, rater_id: str) -> Path:
        if not rater_id or rater_id in (".", "..") or "/" in rater_id or "\\" in rater_id:
            raise ValidationError(f"Invalid rater id for storage: {rater_id!r}")
        path = self.root_dir / "raters" / rater_id
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _read_json(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to read {path}: {e}")
            return default

    def _write_json_atomic(self, path: Path, data: Any) -> None:
        """Write to a temp file in the same directory, then swap it in."""
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _append_jsonl(self, path: Path, records: Iterable[dict[str, Any]]) -> None:
        with open(path, "a", encoding="utf-8") as f:
            for record in records:
                json.dump(record, f, ensure_ascii=False)
                f.write("\n")

    def _iter_jsonl(self, path: Path) -> Iterator[dict[str, Any]]:
        """Yield parsed lines, skipping corrupted ones."""
        if not path.exists():
            return
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError as e:
                    logger.warning(f"Skipping invalid JSON line in {path}: {e}")
                    continue
                if not isinstance(data, dict):
                    logger.warning(f"Skipping non-object line in {path}")
                    continue
                yield typing.cast(dict[str, Any], data)

    # Items and raters

    def register_items(self, item_ids: Sequence[str]) -> None:
        """Replace the item population."""
        if len(set(item_ids)) != len(item_ids):
            raise ValidationError("Item ids must be unique")
        with self._lock:
            self._write_json_atomic(self.items_path, list(item_ids))
        logger.info(f"Registered {len(item_ids)} items")

    @override
    def list_items(self) -> list[str]:
        with self._lock:
            data = self._read_json(self.items_path, [])
        return [str(item_id) for item_id in data]

    @override
    def list_raters(self) -> list[RaterProfile]:
        with self._lock:
            data = typing.cast(dict[str, dict[str, Any]], self._read_json(self.raters_path, {}))
        return [
            RaterProfile(
                rater_id=rater_id,
                reliability_weight=float(record.get("reliability_weight", 1.0)),
                active=bool(record.get("active", True)),
            )
            for rater_id, record in data.items()
        ]

    @override
    def upsert_rater(self, profile: RaterProfile) -> None:
        with self._lock:
            data = typing.cast(dict[str, dict[str, Any]], self._read_json(self.raters_path, {}))
            data[profile.rater_id] = {
                "reliability_weight": profile.reliability_weight,
                "active": profile.active,
            }
            self._write_json_atomic(self.raters_path, data)

    # Latent vectors

    @override
    def get_latent_vector(self, rater_id: str) -> LatentVectorBlob | None:
        """
        Read the stored vector.

        Raises:
            ValidationError: If the file exists but is not a JSON object
        """
        path = self._rater_dir(rater_id) / "latent_vector.json"
        with self._lock:
            if not path.exists():
                return None
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except json.JSONDecodeError as e:
                raise ValidationError(f"Corrupt latent vector for {rater_id}: {e}") from e
        if not isinstance(data, dict):
            raise ValidationError(f"Latent vector for {rater_id} is not a JSON object")
        return typing.cast(LatentVectorBlob, data)

    @override
    def put_latent_vector(self, rater_id: str, blob: LatentVectorBlob) -> None:
        path = self._rater_dir(rater_id) / "latent_vector.json"
        with self._lock:
            self._write_json_atomic(path, blob)
        logger.debug(f"Stored latent vector for {rater_id} at step {blob['step_count']}")

    # Pair observations

    @override
    def append_pair_observations(self, rater_id: str, pairs: Sequence[PairObservation]) -> None:
        path = self._rater_dir(rater_id) / "pairs.jsonl"
        records = [
            {
                "winner_id": pair.winner_id,
                "loser_id": pair.loser_id,
                "weight": pair.weight,
                "rater_id": pair.rater_id,
                "timestamp": pair.timestamp,
            }
            for pair in pairs
        ]
        with self._lock:
            self._append_jsonl(path, records)
        logger.debug(f"Appended {len(records)} pairs for {rater_id}")

    @override
    def load_pair_observations(self, rater_id: str) -> Iterable[PairObservation]:
        path = self._rater_dir(rater_id) / "pairs.jsonl"
        with self._lock:
            records = list(self._iter_jsonl(path))

        pairs: list[PairObservation] = []
        for data in records:
            try:
                pairs.append(
                    PairObservation(
                        winner_id=str(data["winner_id"]),
                        loser_id=str(data["loser_id"]),
                        weight=float(data["weight"]),
                        rater_id=str(data.get("rater_id", rater_id)),
                        timestamp=float(data.get("timestamp", 0.0)),
                    )
                )
            except (KeyError, TypeError, ValueError, ValidationError) as e:
                logger.warning(f"Skipping invalid pair record in {path}: {e}")
        return pairs

    # Exposure

    @override
    def get_exposure_stats(self, rater_id: str) -> dict[str, ExposureStat]:
        path = self._rater_dir(rater_id) / "exposure.json"
        with self._lock:
            data = typing.cast(dict[str, dict[str, Any]], self._read_json(path, {}))
        return {
            item_id: ExposureStat(count=int(record["count"]), uncertainty=float(record["uncertainty"]))
            for item_id, record in data.items()
        }

    @override
    def upsert_exposure_stat(self, rater_id: str, item_id: str, count: int, uncertainty: float) -> None:
        path = self._rater_dir(rater_id) / "exposure.json"
        with self._lock:
            data = typing.cast(dict[str, dict[str, Any]], self._read_json(path, {}))
            data[item_id] = {"count": count, "uncertainty": uncertainty}
            self._write_json_atomic(path, data)

    # Screens and decisions

    @override
    def record_screen(self, screen: Screen) -> None:
        path = self._rater_dir(screen.rater_id) / "screens.jsonl"
        with self._lock:
            self._append_jsonl(
                path,
                [
                    {
                        "screen_id": screen.screen_id,
                        "rater_id": screen.rater_id,
                        "item_ids": list(screen.item_ids),
                        "created_at": screen.created_at,
                    }
                ],
            )

    def _load_screens(self, rater_id: str) -> list[Screen]:
        path = self._rater_dir(rater_id) / "screens.jsonl"
        with self._lock:
            records = list(self._iter_jsonl(path))

        screens: list[Screen] = []
        for data in records:
            try:
                screens.append(
                    Screen(
                        rater_id=str(data["rater_id"]),
                        item_ids=tuple(str(item_id) for item_id in data["item_ids"]),
                        screen_id=str(data["screen_id"]),
                        created_at=float(data.get("created_at", 0.0)),
                    )
                )
            except (KeyError, TypeError, ValueError, ValidationError) as e:
                logger.warning(f"Skipping invalid screen record in {path}: {e}")
        return screens

    @override
    def get_screen(self, rater_id: str, screen_id: str) -> Screen | None:
        for screen in self._load_screens(rater_id):
            if screen.screen_id == screen_id:
                return screen
        return None

    @override
    def count_screens(self, rater_id: str) -> int:
        return len(self._load_screens(rater_id))

    @override
    def get_recent_combinations(self, rater_id: str, n: int) -> set[str]:
        if n <= 0:
            return set()
        screens = self._load_screens(rater_id)
        return {combination_key(screen.item_ids) for screen in screens[-n:]}

    @override
    def persist_decision(self, rater_id: str, decision: Decision) -> None:
        path = self._rater_dir(rater_id) / "decisions.jsonl"
        with self._lock:
            self._append_jsonl(
                path,
                [
                    {
                        "screen_id": decision.screen_id,
                        "shown_ids": list(decision.shown_ids),
                        "top3": list(decision.top3),
                        "middle": list(decision.middle),
                        "loser": decision.loser,
                        "timestamp": decision.timestamp,
                    }
                ],
            )

    def _load_decisions(self, rater_id: str) -> list[Decision]:
        path = self._rater_dir(rater_id) / "decisions.jsonl"
        with self._lock:
            records = list(self._iter_jsonl(path))

        decisions: list[Decision] = []
        for data in records:
            try:
                decisions.append(
                    Decision(
                        screen_id=str(data["screen_id"]),
                        shown_ids=tuple(data["shown_ids"]),
                        top3=tuple(data["top3"]),
                        middle=tuple(data["middle"]),
                        loser=str(data["loser"]),
                        timestamp=float(data.get("timestamp", 0.0)),
                    )
                )
            except (KeyError, TypeError, ValueError, ValidationError) as e:
                logger.warning(f"Skipping invalid decision record in {path}: {e}")
        return decisions

    @override
    def get_decision(self, rater_id: str, screen_id: str) -> Decision | None:
        for decision in self._load_decisions(rater_id):
            if decision.screen_id == screen_id:
                return decision
        return None

    @override
    def count_decisions(self, rater_id: str) -> int:
        return len(self._load_decisions(rater_id))

    # Unknown items

    @override
    def get_unknown_items(self, rater_id: str) -> set[str]:
        path = self._rater_dir(rater_id) / "unknown.json"
        with self._lock:
            data = self._read_json(path, [])
        return {str(item_id) for item_id in data}

    @override
    def add_unknown_items(self, rater_id: str, item_ids: Iterable[str]) -> None:
        path = self._rater_dir(rater_id) / "unknown.json"
        with self._lock:
            current = {str(item_id) for item_id in self._read_json(path, [])}
            current.update(item_ids)
            self._write_json_atomic(path, sorted(current))
