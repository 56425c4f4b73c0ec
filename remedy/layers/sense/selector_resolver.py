"""
Selector Resolver - Candidate selectors and live probing.

For a failed step the resolver probes the original target first. When
nothing matches, it derives alternatives in three tiers and probes each one
in turn:

1. Structural variants of the selector itself (quote swap, name/id swap,
   tag-qualified forms).
2. Text variants (exact text, has-text on buttons and links, value, title
   and aria-label attribute forms).
3. Fuzzy matches against the live DOM snapshot via the Similarity Engine.

Probing is strictly sequential and read-only.
"""

import logging
import re
from typing import List, Optional, Sequence, Tuple

from remedy.core.config import RepairConstants
from remedy.core.errors import DriverError
from remedy.core.models import (
    ActionKind,
    Candidate,
    ElementDescriptor,
    ProbeResult,
    Resolution,
    Step,
)
from remedy.layers.sense.probe_driver import ProbeDriver
from remedy.layers.sense.similarity import similarity

logger = logging.getLogger(__name__)

_ATTR_SELECTOR = re.compile(
    r'^(?P<tag>[A-Za-z][\w-]*)?\[(?P<attr>name|id)=(?P<quote>["\']?)(?P<value>[^"\'\]]+)(?P=quote)\]$'
)
_ID_SELECTOR = re.compile(r"^(?P<tag>[A-Za-z][\w-]*)?#(?P<value>[A-Za-z_][\w-]*)$")
_TEXT_SELECTOR = re.compile(r'^text=(?P<quote>["\']?)(?P<value>.+?)(?P=quote)$')
_HAS_TEXT_SELECTOR = re.compile(r':has-text\((?P<quote>["\'])(?P<value>.*)(?P=quote)\)')
_CSS_IDENT = re.compile(r"^[A-Za-z_][\w-]*$")


def _quoted(value: str) -> str:
    return '"' + value.replace('"', '\\"') + '"'


def selector_key(target: str) -> Tuple[str, str]:
    """
    Extract what a selector is keyed on.

    Returns a (kind, value) pair where kind is 'name', 'id', 'text' or
    'other'.

    Example:
        >>> selector_key('input[name="user-email"]')
        ('name', 'user-email')
    """
    target = (target or "").strip()
    match = _ATTR_SELECTOR.match(target)
    if match:
        return match.group("attr"), match.group("value")
    match = _ID_SELECTOR.match(target)
    if match:
        return "id", match.group("value")
    match = _TEXT_SELECTOR.match(target)
    if match:
        return "text", match.group("value")
    match = _HAS_TEXT_SELECTOR.search(target)
    if match:
        return "text", match.group("value")
    return "other", re.sub(r"[^\w-]+", " ", target).strip()


def selector_priority(selector: str) -> int:
    """Identifier > name > type/tag attribute > bare tag."""
    if selector.startswith("#") or "[id=" in selector or _ID_SELECTOR.match(selector):
        return 0
    if "[name=" in selector:
        return 1
    if "[" in selector or ":" in selector:
        return 2
    return 3


def selector_for(descriptor: ElementDescriptor) -> str:
    """Best selector for a snapshot element, by the same priority."""
    tag = descriptor.tag_name
    if descriptor.id:
        if _CSS_IDENT.match(descriptor.id):
            return f"#{descriptor.id}"
        return f"[id={_quoted(descriptor.id)}]"
    if descriptor.name:
        return f"{tag}[name={_quoted(descriptor.name)}]"
    if descriptor.text and tag in ("button", "a"):
        return f"{tag}:has-text({_quoted(descriptor.text[:40].strip())})"
    if descriptor.input_type:
        return f"{tag}[type={_quoted(descriptor.input_type)}]"
    return tag


def structural_variants(target: str) -> List[str]:
    """Rewrites of ``target`` that address the same element another way."""
    variants: List[str] = []
    if '"' in target:
        variants.append(target.replace('"', "'"))
    elif "'" in target:
        variants.append(target.replace("'", '"'))

    kind, value = selector_key(target)
    if kind in ("name", "id"):
        if _CSS_IDENT.match(value):
            variants.append(f"#{value}")
        variants.append(f"[id={_quoted(value)}]")
        variants.append(f"[name={_quoted(value)}]")
        for tag in ("input", "select", "textarea"):
            variants.append(f"{tag}[name={_quoted(value)}]")

    unique = _dedupe(v for v in variants if v != target)
    # sorted() is stable, so equal priorities keep derivation order
    return sorted(unique, key=selector_priority)


def text_variants(target: str) -> List[str]:
    """Text-based forms for selectors keyed on visible text."""
    kind, value = selector_key(target)
    if kind != "text" or not value:
        return []
    quoted = _quoted(value)
    variants = [
        f"text={quoted}",
        f"button:has-text({quoted})",
        f"a:has-text({quoted})",
        f"[value={quoted}]",
        f"[title={quoted}]",
        f"[aria-label={quoted}]",
    ]
    return _dedupe(v for v in variants if v != target)


def find_descriptor(target: str, snapshot: Sequence[ElementDescriptor]) -> Optional[ElementDescriptor]:
    """The snapshot element the target most plausibly refers to, if any."""
    kind, value = selector_key(target)
    if not value:
        return None
    for descriptor in snapshot:
        if kind == "name" and descriptor.name == value:
            return descriptor
        if kind == "id" and descriptor.id == value:
            return descriptor
        if kind == "text" and descriptor.text and descriptor.text.strip() == value:
            return descriptor
    return None


def _dedupe(selectors) -> List[str]:
    seen = set()
    unique = []
    for selector in selectors:
        if selector not in seen:
            seen.add(selector)
            unique.append(selector)
    return unique


class SelectorResolver:
    """
    Build, rank and probe candidate selectors for a step's target.

    Example:
        >>> resolver = SelectorResolver(probe_driver)
        >>> resolution = resolver.resolve(step, snapshot=live_snapshot)
        >>> [c.selector for c in resolution.alternatives]
        ['input[name="user_email"]']
    """

    def __init__(self, driver: ProbeDriver, constants: Optional[RepairConstants] = None):
        self.driver = driver
        self.constants = constants or RepairConstants()

    def candidates(self, target: str) -> List[Tuple[str, str]]:
        """Ranked (selector, origin) pairs: structural first, then text."""
        ranked = [(s, "structural") for s in structural_variants(target)]
        seen = {s for s, _ in ranked}
        ranked.extend((s, "text") for s in text_variants(target) if s not in seen)
        return ranked

    def fuzzy_candidates(
        self,
        target: str,
        snapshot: Sequence[ElementDescriptor],
        exclude: Sequence[str] = (),
    ) -> List[Tuple[str, float]]:
        """Snapshot elements whose name, id or text resembles the target key."""
        _, key = selector_key(target)
        if not key:
            return []
        threshold = self.constants.similarity_threshold
        scored = {}
        for descriptor in snapshot:
            fields = [
                descriptor.name,
                descriptor.id,
                descriptor.text[:50] if descriptor.text else None,
                descriptor.attributes.get("aria-label"),
                descriptor.attributes.get("placeholder"),
            ]
            score = max((similarity(key, f) for f in fields if f), default=0.0)
            if score < threshold:
                continue
            selector = selector_for(descriptor)
            if selector == target or selector in exclude:
                continue
            scored[selector] = max(score, scored.get(selector, 0.0))
        ranked = sorted(scored.items(), key=lambda pair: pair[1], reverse=True)
        return ranked[: self.constants.max_alternatives]

    def probe(self, selector: str, action: ActionKind, with_hover: bool = True) -> ProbeResult:
        """
        Probe one selector. Raises DriverError if the driver fails.

        The hover-based clickability probe only runs for click actions on a
        visible, enabled element.
        """
        count = self.driver.locator_count(selector)
        result = ProbeResult(selector=selector, exists=count > 0, count=count)
        if not result.exists:
            return result
        result.visible = self.driver.is_visible(selector)
        result.enabled = self.driver.is_enabled(selector)
        if with_hover and action == ActionKind.CLICK and result.visible and result.enabled:
            result.clickable = self.driver.hover_probe(selector, self.constants.hover_timeout_ms)
        return result

    def resolve(self, step: Step, snapshot: Sequence[ElementDescriptor] = ()) -> Resolution:
        """
        Probe the step's target and, if it is missing, every alternative.

        Never raises DriverError: a failure on the original target returns an
        unresolved Resolution, and a failure on an alternative drops that
        alternative.
        """
        if not step.action.targets_element:
            return Resolution.unprobed(step.target)

        try:
            original = self.probe(step.target, step.action)
        except DriverError as e:
            logger.warning(f"[SelectorResolver] Probe of {step.target} unresolved: {e}")
            return Resolution.unprobed(step.target, str(e))

        resolution = Resolution(
            target=step.target,
            probes=[original],
            descriptor=find_descriptor(step.target, snapshot),
        )
        if original.exists:
            return resolution

        tried = {step.target}
        for selector, origin in self.candidates(step.target):
            tried.add(selector)
            probe = self._probe_alternative(selector, step.action)
            if probe is None:
                continue
            resolution.probes.append(probe)
            if probe.exists:
                resolution.alternatives.append(Candidate(selector, origin, 1.0, probe))

        for selector, score in self.fuzzy_candidates(step.target, snapshot, exclude=tuple(tried)):
            probe = self._probe_alternative(selector, step.action)
            if probe is None:
                continue
            resolution.probes.append(probe)
            if probe.exists:
                resolution.alternatives.append(Candidate(selector, "fuzzy", score, probe))

        logger.info(
            f"[SelectorResolver] {step.target}: not found, "
            f"{len(resolution.alternatives)} alternative(s) exist"
        )
        return resolution

    def _probe_alternative(self, selector: str, action: ActionKind) -> Optional[ProbeResult]:
        try:
            return self.probe(selector, action, with_hover=False)
        except DriverError as e:
            logger.debug(f"[SelectorResolver] Dropping alternative {selector}: {e}")
            return None
