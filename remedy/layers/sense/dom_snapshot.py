"""
DOM Snapshot - Structure drift and compact page summaries.

A route may carry the DOM snapshot captured when it was recorded. Comparing
it with the live snapshot tells the ranker whether the page structure moved
underneath the test, in which case every structural guess is less certain.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Set

from remedy.core.models import ElementDescriptor


@dataclass
class StructureDrift:
    """Inputs and buttons that appeared or disappeared between two snapshots."""
    added_inputs: List[str] = field(default_factory=list)
    removed_inputs: List[str] = field(default_factory=list)
    added_buttons: List[str] = field(default_factory=list)
    removed_buttons: List[str] = field(default_factory=list)

    @property
    def detected(self) -> bool:
        return bool(
            self.added_inputs or self.removed_inputs
            or self.added_buttons or self.removed_buttons
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detected": self.detected,
            "added_inputs": self.added_inputs,
            "removed_inputs": self.removed_inputs,
            "added_buttons": self.added_buttons,
            "removed_buttons": self.removed_buttons,
        }


def _input_names(snapshot: Sequence[ElementDescriptor]) -> Set[str]:
    return {d.name for d in snapshot if d.is_input and d.name}


def _button_texts(snapshot: Sequence[ElementDescriptor]) -> Set[str]:
    return {d.text.strip() for d in snapshot if d.is_button and d.text and d.text.strip()}


def detect_structure_drift(
    cached: Sequence[ElementDescriptor],
    live: Sequence[ElementDescriptor],
) -> StructureDrift:
    """
    Compare input names and button texts of a cached and a live snapshot.

    An empty snapshot on either side means there is nothing to compare,
    so no drift is reported. The live side is empty when navigation or
    the snapshot itself failed.
    """
    if not cached or not live:
        return StructureDrift()

    cached_inputs, live_inputs = _input_names(cached), _input_names(live)
    cached_buttons, live_buttons = _button_texts(cached), _button_texts(live)
    return StructureDrift(
        added_inputs=sorted(live_inputs - cached_inputs),
        removed_inputs=sorted(cached_inputs - live_inputs),
        added_buttons=sorted(live_buttons - cached_buttons),
        removed_buttons=sorted(cached_buttons - live_buttons),
    )


def summarize_snapshot(snapshot: Sequence[ElementDescriptor], limit: int = 40) -> str:
    """Render visible elements as one line each, for language-model prompts."""
    lines = []
    for elem in snapshot:
        if not elem.visible:
            continue
        attrs = []
        if elem.id:
            attrs.append(f"id='{elem.id}'")
        if elem.name:
            attrs.append(f"name='{elem.name}'")
        if elem.input_type:
            attrs.append(f"type='{elem.input_type}'")
        if elem.attributes.get("placeholder"):
            attrs.append(f"placeholder='{elem.attributes['placeholder']}'")
        if elem.text:
            attrs.append(f"text='{elem.text[:50].strip()}'")
        if not elem.enabled:
            attrs.append("disabled")
        lines.append(f"[{len(lines)}] {elem.tag_name} {' '.join(attrs)}".rstrip())
        if len(lines) >= limit:
            break
    return "\n".join(lines)
