"""
Route I/O - Load routes and run results, persist repaired routes.

Older files come in several shapes (batch results with ``step_results``,
cached ``dom_analysis`` blocks, ``goto``/``select`` action names); they are
all normalized here so nothing downstream has to care.
"""

import glob
import json
import logging
import os
import re
from typing import Any, Dict, List, Optional, Tuple

from remedy.core.errors import ConfigError
from remedy.core.models import (
    AppliedFix,
    ElementDescriptor,
    FixSummary,
    Route,
    RunResult,
    Step,
    StepStatus,
)

logger = logging.getLogger(__name__)

_FIXED_ROUTE_ID = re.compile(r"fixed_(?:route_)?(\d+)")
_FIXED_NAMED_ROUTE_ID = re.compile(r"fixed_(?:route_)?(.+)_\d{14}$")


def read_json(path: str) -> Dict[str, Any]:
    """Read a JSON object from ``path``, raising ConfigError on any problem."""
    if not os.path.exists(path):
        raise ConfigError(f"File not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigError(f"Cannot read {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"{path} does not hold a JSON object")
    return data


def parse_route(data: Dict[str, Any], source: str = "<route>") -> Route:
    steps = data.get("steps")
    if not isinstance(steps, list):
        raise ConfigError(f"{source}: 'steps' must be a list")
    route_id = data.get("route_id") or data.get("id")
    if route_id is None:
        raise ConfigError(f"{source}: missing 'route_id'")

    summary = data.get("fix_summary")
    return Route(
        route_id=str(route_id),
        steps=tuple(Step.from_dict(s).as_recorded() for s in steps),
        user_story_id=_optional_str(data.get("user_story_id")),
        generated_at=data.get("generated_at"),
        is_fixed_route=bool(data.get("is_fixed_route", False)),
        original_route_id=_optional_str(data.get("original_route_id")),
        fix_timestamp=data.get("fix_timestamp"),
        fix_summary=FixSummary.from_dict(summary) if isinstance(summary, dict) else None,
        applied_fixes=tuple(AppliedFix.from_dict(f) for f in data.get("applied_fixes") or []),
        dom_snapshot=tuple(parse_dom_snapshot(data)),
    )


def parse_dom_snapshot(data: Dict[str, Any]) -> List[ElementDescriptor]:
    """
    Cached DOM elements stored with a route.

    Accepts the current ``dom_snapshot`` list and the older ``dom_analysis``
    block, which groups elements as ``{"elements": {"inputs": [...], ...}}``.
    """
    if isinstance(data.get("dom_snapshot"), list):
        return [ElementDescriptor.from_dict(d) for d in data["dom_snapshot"] if isinstance(d, dict)]

    analysis = data.get("dom_analysis") or (data.get("page_info") or {}).get("dom_analysis")
    if not isinstance(analysis, dict):
        return []
    groups = analysis.get("elements", analysis)
    descriptors = []
    for group, tag in (("inputs", "input"), ("selects", "select"), ("textareas", "textarea"),
                       ("buttons", "button"), ("links", "a")):
        for item in groups.get(group) or []:
            if isinstance(item, dict):
                descriptors.append(ElementDescriptor.from_dict(item, default_tag=tag))
    return descriptors


def load_route(path: str) -> Route:
    return parse_route(read_json(path), source=path)


def parse_results(data: Dict[str, Any], source: str = "<result>") -> List[RunResult]:
    """
    Normalize a result file into one RunResult per route.

    Handles both the per-route shape (``steps``) and the batch shape
    (``results[].step_results``).
    """
    if isinstance(data.get("results"), list):
        batch_id = data.get("batch_id")
        return [
            _parse_run(entry, source, batch_id=batch_id)
            for entry in data["results"]
            if isinstance(entry, dict)
        ]
    return [_parse_run(data, source)]


def _parse_run(data: Dict[str, Any], source: str, batch_id: Optional[str] = None) -> RunResult:
    raw_steps = data.get("steps", data.get("step_results"))
    if not isinstance(raw_steps, list):
        raise ConfigError(f"{source}: result has neither 'steps' nor 'step_results'")
    route_id = data.get("route_id") or data.get("id")
    if route_id is None:
        raise ConfigError(f"{source}: result is missing 'route_id'")

    steps = tuple(Step.from_dict(s) for s in raw_steps)
    failed_count = sum(1 for s in steps if s.is_failed)
    return RunResult(
        route_id=str(route_id),
        steps=steps,
        failed_count=int(data.get("failed_count", failed_count)),
        total_steps=int(data.get("total_steps", len(steps))),
        category=data.get("category"),
        batch_id=batch_id,
    )


def load_results(path: str) -> List[RunResult]:
    return parse_results(read_json(path), source=path)


def find_latest_result(results_dir: str) -> str:
    """Newest ``result_*.json`` in ``results_dir``."""
    candidates = glob.glob(os.path.join(results_dir, "result_*.json"))
    if not candidates:
        raise ConfigError(f"No result_*.json files in {results_dir}")
    return max(candidates, key=os.path.getmtime)


def route_path_candidates(results_dir: str, route_id: str) -> List[str]:
    """
    Where the route file for ``route_id`` may live, most specific first.

    A repaired route id like ``fixed_route_12_20240105`` first maps to its
    own file, then back to the original ``route_12.json``.
    """
    paths = []
    if route_id.startswith("fixed_"):
        match = _FIXED_ROUTE_ID.match(route_id) or _FIXED_NAMED_ROUTE_ID.match(route_id)
        if match:
            paths.append(os.path.join(results_dir, f"fixed_route_{match.group(1)}.json"))
            paths.append(os.path.join(results_dir, f"route_{match.group(1)}.json"))
    paths.append(os.path.join(results_dir, f"{route_id}.json"))
    if not route_id.startswith("route_"):
        paths.append(os.path.join(results_dir, f"route_{route_id}.json"))
    return paths


def resolve_route(results_dir: str, result: RunResult) -> Optional[Route]:
    """The recorded Route for ``result``, or None when no file exists."""
    for path in route_path_candidates(results_dir, result.route_id):
        if os.path.exists(path):
            logger.info(f"[RouteIO] Using route file {path}")
            return load_route(path)
    return None


def route_from_result(result: RunResult) -> Route:
    """Reconstruct a Route from the steps recorded in a result."""
    return Route(
        route_id=result.route_id,
        steps=tuple(s.as_recorded() for s in result.steps),
    )


def pair_steps(route: Route, result: RunResult) -> List[Tuple[int, Step, Optional[Step]]]:
    """
    Line up route steps with their recorded outcome.

    Steps are matched by position when the labels agree, otherwise by the
    first unused result step with the same label. Route steps with no
    recorded outcome get None.
    """
    used = set()
    pairs = []
    for index, step in enumerate(route.steps):
        outcome = None
        if index < len(result.steps) and index not in used and result.steps[index].label == step.label:
            outcome = result.steps[index]
            used.add(index)
        else:
            for j, candidate in enumerate(result.steps):
                if j not in used and candidate.label == step.label:
                    outcome = candidate
                    used.add(j)
                    break
        pairs.append((index, step, outcome))
    return pairs


def repaired_route_path(results_dir: str, route: Route) -> str:
    origin = route.original_route_id or route.route_id
    if origin.startswith("route_"):
        origin = origin[len("route_"):]
    return os.path.join(results_dir, f"fixed_route_{origin}.json")


def save_route(route: Route, path: str) -> str:
    """Write ``route`` to ``path``; rewriting the same route is harmless."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tmp_path = f"{path}.tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(route.to_dict(), f, indent=2, ensure_ascii=False)
    os.replace(tmp_path, path)
    logger.info(f"[RouteIO] Saved {route.route_id} to {path}")
    return path


def save_result(result: RunResult, results_dir: str) -> str:
    path = os.path.join(results_dir, f"result_{result.route_id}.json")
    os.makedirs(results_dir, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(result.to_dict(), f, indent=2, ensure_ascii=False)
    return path


def is_unreached(outcome: Optional[Step]) -> bool:
    return outcome is None or outcome.status in (StepStatus.PENDING, StepStatus.SKIPPED)


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)
