from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Dict

from .models import BuildResult


def load_build_state(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        return {}
    data = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("build_state.json must contain an object")
    return data


def save_build_state(path: str, state: Dict[str, Any]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_name(p.name + ".tmp")
    tmp.write_text(json.dumps(state, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(p)


def ensure_build_defaults(state: Dict[str, Any]) -> Dict[str, Any]:
    state.setdefault("targets", {})
    return state


def mark_completed(state: Dict[str, Any], *, target: str, step_id: str) -> None:
    t = state.setdefault("targets", {}).setdefault(target, {})
    completed = t.setdefault("completed_steps", [])
    if step_id not in completed:
        completed.append(step_id)


def unmark_completed(state: Dict[str, Any], *, target: str, step_id: str) -> None:
    t = (state.get("targets") or {}).get(target) or {}
    completed = t.get("completed_steps") or []
    if step_id in completed:
        completed.remove(step_id)


def is_completed(state: Dict[str, Any], *, target: str, step_id: str) -> bool:
    t = (state.get("targets") or {}).get(target) or {}
    return step_id in (t.get("completed_steps") or [])


def reset_target(state: Dict[str, Any], *, target: str) -> None:
    """Forget completed steps, e.g. after the base image changed."""
    t = state.setdefault("targets", {}).setdefault(target, {})
    t["completed_steps"] = []


def record_result(state: Dict[str, Any], result: BuildResult) -> None:
    t = state.setdefault("targets", {}).setdefault(result.arch, {})
    t["last_result"] = {
        "stage": result.stage,
        "output": str(result.output) if result.output else None,
        "error": result.error,
        "error_type": result.error_type,
        "failed_stage": result.failed_stage,
    }


class BuildStateStore:
    """Thread-safe wrapper used when several targets build concurrently."""

    def __init__(self, path: str, state: Dict[str, Any]) -> None:
        self.path = path
        self.state = ensure_build_defaults(state)
        self._lock = threading.Lock()

    @classmethod
    def open(cls, path: str) -> "BuildStateStore":
        return cls(path, load_build_state(path))

    def is_completed(self, *, target: str, step_id: str) -> bool:
        with self._lock:
            return is_completed(self.state, target=target, step_id=step_id)

    def mark_completed(self, *, target: str, step_id: str) -> None:
        with self._lock:
            mark_completed(self.state, target=target, step_id=step_id)
            save_build_state(self.path, self.state)

    def unmark_completed(self, *, target: str, step_id: str) -> None:
        with self._lock:
            unmark_completed(self.state, target=target, step_id=step_id)
            save_build_state(self.path, self.state)

    def reset_target(self, *, target: str) -> None:
        with self._lock:
            reset_target(self.state, target=target)
            save_build_state(self.path, self.state)

    def record_result(self, result: BuildResult) -> None:
        with self._lock:
            record_result(self.state, result)
            save_build_state(self.path, self.state)
