"""
Models - Canonical shapes shared by every layer.

Steps and Routes are immutable snapshots: the repair pipeline derives new
values with ``dataclasses.replace`` and never edits a recorded Step in place.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from remedy.core.errors import ConfigError


class ActionKind(str, Enum):
    """Browser actions a Step can perform."""
    LOAD = "load"
    CLICK = "click"
    DOUBLE_CLICK = "doubleClick"
    HOVER = "hover"
    FILL = "fill"
    KEY_PRESS = "keyPress"
    FOCUS = "focus"
    BLUR = "blur"
    CHECK = "check"
    UNCHECK = "uncheck"
    SELECT_OPTION = "selectOption"
    SET_INPUT_FILES = "setInputFiles"
    SCROLL = "scroll"
    ASSERT_VISIBLE = "assertVisible"
    ASSERT_TEXT = "assertText"
    WAIT_FOR_SELECTOR = "waitForSelector"
    WAIT_FOR_URL = "waitForURL"
    WAIT_FOR_LOAD_STATE = "waitForLoadState"
    WAIT_FOR_TIMEOUT = "waitForTimeout"
    EVALUATE = "evaluate"
    SCREENSHOT = "screenshot"
    SKIP = "skip"

    @classmethod
    def parse(cls, raw: Any) -> "ActionKind":
        """Parse an action name, accepting the older schema aliases."""
        if isinstance(raw, cls):
            return raw
        name = str(raw or "").strip()
        name = _ACTION_ALIASES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            raise ConfigError(f"Unknown action kind: {raw!r}")

    @property
    def targets_element(self) -> bool:
        """True when the action's target is a DOM selector."""
        return self not in PAGE_ACTIONS

    @property
    def needs_target(self) -> bool:
        return self not in (
            ActionKind.SKIP,
            ActionKind.SCREENSHOT,
            ActionKind.WAIT_FOR_LOAD_STATE,
            ActionKind.WAIT_FOR_TIMEOUT,
        )

    @property
    def is_interactive(self) -> bool:
        return self in INTERACTIVE_ACTIONS

    @property
    def is_assertion(self) -> bool:
        return self in (
            ActionKind.ASSERT_VISIBLE,
            ActionKind.ASSERT_TEXT,
            ActionKind.WAIT_FOR_SELECTOR,
        )


_ACTION_ALIASES = {
    "goto": "load",
    "navigate": "load",
    "select": "selectOption",
    "waitForUrl": "waitForURL",
    "waitforurl": "waitForURL",
    "waitforselector": "waitForSelector",
    "wait": "waitForTimeout",
    "upload": "setInputFiles",
    "dblclick": "doubleClick",
    "press": "keyPress",
}

# Targets of these are URLs, scripts, durations or page positions
PAGE_ACTIONS = frozenset({
    ActionKind.LOAD,
    ActionKind.WAIT_FOR_URL,
    ActionKind.WAIT_FOR_LOAD_STATE,
    ActionKind.WAIT_FOR_TIMEOUT,
    ActionKind.EVALUATE,
    ActionKind.SCREENSHOT,
    ActionKind.SCROLL,
    ActionKind.SKIP,
})

INTERACTIVE_ACTIONS = frozenset({
    ActionKind.CLICK,
    ActionKind.DOUBLE_CLICK,
    ActionKind.HOVER,
    ActionKind.FILL,
    ActionKind.KEY_PRESS,
    ActionKind.CHECK,
    ActionKind.UNCHECK,
    ActionKind.SELECT_OPTION,
    ActionKind.SET_INPUT_FILES,
})


class StepStatus(str, Enum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @classmethod
    def parse(cls, raw: Any) -> "StepStatus":
        name = str(raw or "pending").strip().lower()
        name = {"success": "passed", "pass": "passed", "fail": "failed", "error": "failed"}.get(name, name)
        try:
            return cls(name)
        except ValueError:
            return cls.PENDING


class ErrorKind(str, Enum):
    """Closed classification of why a Step failed."""
    ELEMENT_NOT_FOUND = "element_not_found"
    NOT_VISIBLE = "not_visible"
    NOT_ENABLED = "not_enabled"
    NOT_CLICKABLE = "not_clickable"
    WRONG_ELEMENT_TYPE = "wrong_element_type"
    UI_INTERFERENCE = "ui_interference"
    DYNAMIC_LOADING_TIMEOUT = "dynamic_loading_timeout"
    UNKNOWN = "unknown"


class FixKind(str, Enum):
    ALTERNATIVE_SELECTOR = "alternative_selector"
    ACTION_CORRECTION = "action_correction"
    WAIT_THEN_RETRY = "wait_then_retry"
    FORCE_ACTION = "force_action"
    SCROLL_THEN_RETRY = "scroll_then_retry"
    SKIP = "skip"


class ChainKind(str, Enum):
    NAVIGATION = "navigation_chain"
    INPUT_TYPE = "input_type_chain"
    REQUIRED_FIELD = "required_field_chain"
    UI_INTERFERENCE = "ui_interference_chain"


@dataclass
class ElementDescriptor:
    """
    Snapshot of one DOM element's relevant properties.

    Produced fresh by a live probe, or parsed back from a cached snapshot
    stored alongside a route.
    """
    tag_name: str
    input_type: Optional[str] = None
    name: Optional[str] = None
    id: Optional[str] = None
    text: Optional[str] = None
    attributes: Dict[str, str] = field(default_factory=dict)
    visible: bool = True
    enabled: bool = True
    options: List[Dict[str, str]] = field(default_factory=list)
    bounding_box: Optional[Dict[str, float]] = None

    @property
    def is_input(self) -> bool:
        return self.tag_name in ("input", "textarea", "select")

    @property
    def is_button(self) -> bool:
        return self.tag_name == "button" or self.input_type in ("submit", "button")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tagName": self.tag_name,
            "inputType": self.input_type,
            "name": self.name,
            "id": self.id,
            "text": self.text,
            "attributes": self.attributes,
            "visible": self.visible,
            "enabled": self.enabled,
            "options": self.options,
            "boundingBox": self.bounding_box,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], default_tag: str = "input") -> "ElementDescriptor":
        """
        Build a descriptor from either the live-probe shape or the older
        cached ``dom_analysis`` shape (``{name, type, id, text, ...}``).
        """
        attributes = dict(data.get("attributes") or {})
        for key in ("placeholder", "aria-label", "title", "value", "required"):
            if key in data and key not in attributes and data[key] is not None:
                attributes[key] = str(data[key])
        tag = data.get("tagName") or data.get("tag") or default_tag
        return cls(
            tag_name=str(tag).lower(),
            input_type=data.get("inputType") or data.get("type"),
            name=data.get("name") or None,
            id=data.get("id") or None,
            text=data.get("text") or None,
            attributes=attributes,
            visible=bool(data.get("visible", data.get("isVisible", True))),
            enabled=bool(data.get("enabled", not data.get("disabled", False))),
            options=list(data.get("options") or []),
            bounding_box=data.get("boundingBox"),
        )


@dataclass(frozen=True)
class Step:
    """One browser action with its target selector and recorded outcome."""
    label: str
    action: ActionKind
    target: str = ""
    value: Optional[str] = None
    status: StepStatus = StepStatus.PENDING
    error: Optional[str] = None
    # Repair provenance, set only on steps produced by the compiler
    original_action: Optional[ActionKind] = None
    original_target: Optional[str] = None
    original_value: Optional[str] = None
    fix_reason: Optional[str] = None
    fix_kind: Optional[FixKind] = None
    fix_confidence: Optional[float] = None
    # Execution modifiers understood by the RouteRunner
    force: bool = False
    scroll_before_action: bool = False
    wait_for_visible: bool = False
    timeout_ms: Optional[int] = None

    def __post_init__(self):
        if not self.target and self.action.needs_target:
            raise ConfigError(f"Step '{self.label}' ({self.action.value}) has no target")

    @property
    def is_failed(self) -> bool:
        return self.status == StepStatus.FAILED

    @property
    def is_repaired(self) -> bool:
        return self.original_action is not None

    def as_recorded(self) -> "Step":
        """Drop run outcome fields, keeping only what a route file stores."""
        return replace(self, status=StepStatus.PENDING, error=None)

    def to_dict(self, include_outcome: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "label": self.label,
            "action": self.action.value,
            "target": self.target,
        }
        if self.value is not None:
            data["value"] = self.value
        if include_outcome:
            data["status"] = self.status.value
            if self.error:
                data["error"] = self.error
        if self.original_action is not None:
            data["original_action"] = self.original_action.value
            data["original_target"] = self.original_target
            if self.original_value is not None:
                data["original_value"] = self.original_value
        if self.fix_reason:
            data["fix_reason"] = self.fix_reason
        if self.fix_kind is not None:
            data["fix_kind"] = self.fix_kind.value
        if self.fix_confidence is not None:
            data["fix_confidence"] = round(self.fix_confidence, 4)
        for flag in ("force", "scroll_before_action", "wait_for_visible"):
            if getattr(self, flag):
                data[flag] = True
        if self.timeout_ms is not None:
            data["timeout_ms"] = self.timeout_ms
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Step":
        if not isinstance(data, dict):
            raise ConfigError(f"Step must be an object, got {type(data).__name__}")
        action = ActionKind.parse(data.get("action"))
        value = data.get("value")
        original_action = data.get("original_action")
        fix_kind = data.get("fix_kind")
        return cls(
            label=str(data.get("label") or data.get("description") or action.value),
            action=action,
            target=str(data.get("target") or ""),
            value=None if value is None else str(value),
            status=StepStatus.parse(data.get("status")),
            error=data.get("error") or None,
            original_action=ActionKind.parse(original_action) if original_action else None,
            original_target=data.get("original_target"),
            original_value=data.get("original_value"),
            fix_reason=data.get("fix_reason"),
            fix_kind=FixKind(fix_kind) if fix_kind else None,
            fix_confidence=data.get("fix_confidence"),
            force=bool(data.get("force", False)),
            scroll_before_action=bool(data.get("scroll_before_action", False)),
            wait_for_visible=bool(data.get("wait_for_visible", False)),
            timeout_ms=data.get("timeout_ms"),
        )


@dataclass(frozen=True)
class FixSummary:
    total_steps: int = 0
    fixed_steps: int = 0
    skipped_steps: int = 0
    alternative_selectors: int = 0
    simple_fixes: int = 0
    unresolved_steps: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_steps": self.total_steps,
            "fixed_steps": self.fixed_steps,
            "skipped_steps": self.skipped_steps,
            "alternative_selectors": self.alternative_selectors,
            "simple_fixes": self.simple_fixes,
            "unresolved_steps": self.unresolved_steps,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FixSummary":
        return cls(**{k: int(data.get(k, 0)) for k in cls().to_dict()})


@dataclass(frozen=True)
class AppliedFix:
    """Ledger entry for one rewritten step of a repaired route."""
    step_index: int
    original_action: ActionKind
    new_action: ActionKind
    kind: FixKind
    description: str
    original_target: str = ""
    confidence: float = 0.0
    error_kind: ErrorKind = ErrorKind.UNKNOWN
    source: str = "ranker"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stepIndex": self.step_index,
            "originalAction": self.original_action.value,
            "newAction": self.new_action.value,
            "type": self.kind.value,
            "description": self.description,
            "originalTarget": self.original_target,
            "confidence": round(self.confidence, 4),
            "errorKind": self.error_kind.value,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppliedFix":
        return cls(
            step_index=int(data["stepIndex"]),
            original_action=ActionKind.parse(data.get("originalAction")),
            new_action=ActionKind.parse(data.get("newAction")),
            kind=FixKind(data.get("type", FixKind.SKIP.value)),
            description=data.get("description", ""),
            original_target=data.get("originalTarget", ""),
            confidence=float(data.get("confidence", 0.0)),
            error_kind=ErrorKind(data.get("errorKind", ErrorKind.UNKNOWN.value)),
            source=data.get("source", "ranker"),
        )


@dataclass(frozen=True)
class Route:
    """
    An ordered, named sequence of Steps (a.k.a. Scenario).

    A repaired Route always points back at its origin via
    ``original_route_id``; the original is never overwritten.
    """
    route_id: str
    steps: Tuple[Step, ...]
    user_story_id: Optional[str] = None
    generated_at: Optional[str] = None
    is_fixed_route: bool = False
    original_route_id: Optional[str] = None
    fix_timestamp: Optional[str] = None
    fix_summary: Optional[FixSummary] = None
    applied_fixes: Tuple[AppliedFix, ...] = ()
    dom_snapshot: Tuple[ElementDescriptor, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "route_id": self.route_id,
            "steps": [s.to_dict() for s in self.steps],
        }
        if self.user_story_id is not None:
            data["user_story_id"] = self.user_story_id
        if self.generated_at is not None:
            data["generated_at"] = self.generated_at
        if self.is_fixed_route:
            data["is_fixed_route"] = True
            data["original_route_id"] = self.original_route_id
            data["fix_timestamp"] = self.fix_timestamp
            data["fix_summary"] = (self.fix_summary or FixSummary()).to_dict()
            data["applied_fixes"] = [f.to_dict() for f in self.applied_fixes]
        if self.dom_snapshot:
            data["dom_snapshot"] = [d.to_dict() for d in self.dom_snapshot]
        return data


@dataclass(frozen=True)
class RunResult:
    """Outcome of running one Route, normalized from either result shape."""
    route_id: str
    steps: Tuple[Step, ...]
    failed_count: int = 0
    total_steps: int = 0
    category: Optional[str] = None
    batch_id: Optional[str] = None

    @property
    def has_failures(self) -> bool:
        return any(s.is_failed for s in self.steps)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "route_id": self.route_id,
            "steps": [s.to_dict(include_outcome=True) for s in self.steps],
            "failed_count": self.failed_count,
            "total_steps": self.total_steps,
        }
        if self.category:
            data["category"] = self.category
        return data


@dataclass
class ProbeResult:
    """What the live page reported for one selector."""
    selector: str
    exists: bool = False
    visible: bool = False
    enabled: bool = False
    clickable: Optional[bool] = None
    count: int = 0
    resolved: bool = True
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selector": self.selector,
            "exists": self.exists,
            "visible": self.visible,
            "enabled": self.enabled,
            "clickable": self.clickable,
            "count": self.count,
            "resolved": self.resolved,
            "error": self.error,
        }


@dataclass
class Candidate:
    """An alternative selector that exists on the live page."""
    selector: str
    origin: str  # 'structural', 'text' or 'fuzzy'
    similarity: float = 1.0
    probe: Optional[ProbeResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selector": self.selector,
            "origin": self.origin,
            "similarity": round(self.similarity, 4),
            "probe": self.probe.to_dict() if self.probe else None,
        }


@dataclass
class Resolution:
    """
    Selector Resolver output for one target.

    ``probes[0]`` is always the original target; later entries are the
    candidate variants that were tried, in probe order.
    """
    target: str
    probes: List[ProbeResult] = field(default_factory=list)
    alternatives: List[Candidate] = field(default_factory=list)
    descriptor: Optional[ElementDescriptor] = None

    @property
    def original(self) -> Optional[ProbeResult]:
        return self.probes[0] if self.probes else None

    @property
    def resolved(self) -> bool:
        return bool(self.probes) and self.probes[0].resolved

    @classmethod
    def unprobed(cls, target: str, error: Optional[str] = None) -> "Resolution":
        return cls(target=target, probes=[ProbeResult(selector=target, resolved=False, error=error)])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "probes": [p.to_dict() for p in self.probes],
            "alternatives": [c.to_dict() for c in self.alternatives],
        }


@dataclass(frozen=True)
class FailureRecord:
    """A failed (or unreached) Step together with its diagnosis."""
    index: int
    step: Step
    error_text: str
    kind: ErrorKind
    resolution: Optional[Resolution] = None
    reached: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "label": self.step.label,
            "action": self.step.action.value,
            "target": self.step.target,
            "error": self.error_text,
            "kind": self.kind.value,
            "reached": self.reached,
            "resolution": self.resolution.to_dict() if self.resolution else None,
        }


@dataclass(frozen=True)
class FixProposal:
    """A candidate repair for one failed Step."""
    kind: FixKind
    confidence: float
    rationale: str
    resulting_step: Step
    source: str = "ranker"

    def scaled(self, factor: float) -> "FixProposal":
        return replace(self, confidence=self.confidence * factor)

    def fix_payload(self) -> Dict[str, Any]:
        """The learnable part of the fix, as stored in the pattern store."""
        payload = self.resulting_step.to_dict()
        for key in ("label", "original_action", "original_target", "original_value",
                    "fix_reason", "fix_kind", "fix_confidence"):
            payload.pop(key, None)
        payload["type"] = self.kind.value
        return payload

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "confidence": round(self.confidence, 4),
            "rationale": self.rationale,
            "source": self.source,
            "resulting_step": self.resulting_step.to_dict(),
        }


@dataclass(frozen=True)
class PatternKey:
    action: ActionKind
    target: str
    error_kind: ErrorKind

    def as_string(self) -> str:
        return f"{self.action.value}:{self.target}:{self.error_kind.value}"


@dataclass
class PatternAttempt:
    timestamp: str
    fix: Dict[str, Any]
    success: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "fix": self.fix, "success": self.success}


@dataclass
class Chain:
    """A root-cause failure and the failures that cascade from it."""
    kind: ChainKind
    root: FailureRecord
    dependents: List[FailureRecord] = field(default_factory=list)
    severity: str = "medium"

    @property
    def dependent_indexes(self) -> List[int]:
        return [d.index for d in self.dependents]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "root_index": self.root.index,
            "root_label": self.root.step.label,
            "dependent_indexes": self.dependent_indexes,
            "severity": self.severity,
        }
