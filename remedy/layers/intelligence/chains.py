"""
Dependency Chain Analyzer - Root causes and their cascading failures.

A failed submit usually drags every later assertion down with it. Repairing
those assertions independently would only hide the real problem, so each
dependent is skipped with a pointer back at the root cause instead.

Rules run in a fixed order and a failure is claimed at most once:

1. navigation_chain
2. input_type_chain
3. required_field_chain
4. ui_interference_chain
"""

from dataclasses import replace
import logging
import re
from typing import Callable, Dict, List, Optional, Sequence, Set

from remedy.core.config import RepairConstants
from remedy.core.models import (
    ActionKind,
    Chain,
    ChainKind,
    ErrorKind,
    FailureRecord,
    FixKind,
    FixProposal,
    StepStatus,
)
from remedy.layers.sense.selector_resolver import selector_key

logger = logging.getLogger(__name__)

NAVIGATION_TRIGGERS = ("submit", "button", "確認", "送信", "登録")
SUBMIT_TRIGGERS = ("submit", "送信", "確認", "登録")
RELATED_FAMILIES = ("user", "email", "contact", "address", "tel", "phone", "name")
_REQUIRED_LABEL = re.compile(r"required|必須")

SEVERITY = {
    ChainKind.NAVIGATION: "high",
    ChainKind.INPUT_TYPE: "medium",
    ChainKind.REQUIRED_FIELD: "high",
    ChainKind.UI_INTERFERENCE: "medium",
}


def field_name(target: str) -> str:
    return selector_key(target)[1].lower()


def is_related_input(a: str, b: str) -> bool:
    """
    Whether two field names plausibly belong to the same input group.

    Example:
        >>> is_related_input("contact_email", "contact_phone")
        True
    """
    a, b = a.lower(), b.lower()
    if not a or not b:
        return False
    if any(family in a and family in b for family in RELATED_FAMILIES):
        return True
    prefix_a = re.split(r"[-_]", a)[0]
    prefix_b = re.split(r"[-_]", b)[0]
    return len(prefix_a) > 1 and prefix_a == prefix_b


def _mentions(target: str, triggers: Sequence[str]) -> bool:
    lowered = target.lower()
    return any(t in lowered for t in triggers)


def cascading_skip(chain: Chain, dependent: FailureRecord, confidence: float) -> FixProposal:
    """The forced skip for a chain dependent."""
    root = chain.root
    return FixProposal(
        kind=FixKind.SKIP,
        confidence=confidence,
        rationale=(
            f"cascading failure ({chain.kind.value}): caused by step {root.index} "
            f"'{root.step.label}' ({root.step.action.value} {root.step.target})"
        ),
        resulting_step=replace(
            dependent.step, action=ActionKind.SKIP, status=StepStatus.PENDING, error=None
        ),
        source="chain",
    )


class ChainAnalyzer:
    """
    Group failures into root-cause chains.

    Unreached steps (never executed because an earlier step failed) can be
    dependents but never roots.

    Example:
        >>> chains = ChainAnalyzer().analyze(failures)
        >>> chains[0].kind, chains[0].dependent_indexes
        (<ChainKind.NAVIGATION: 'navigation_chain'>, [3, 4])
    """

    def __init__(self, constants: Optional[RepairConstants] = None):
        self.constants = constants or RepairConstants()
        self._rules: List[Callable[[List[FailureRecord], Set[int]], List[Chain]]] = [
            self._navigation_chains,
            self._input_type_chains,
            self._required_field_chains,
            self._ui_interference_chains,
        ]

    def analyze(self, failures: Sequence[FailureRecord]) -> List[Chain]:
        ordered = sorted(failures, key=lambda f: f.index)
        claimed: Set[int] = set()
        chains: List[Chain] = []
        for rule in self._rules:
            chains.extend(rule(ordered, claimed))
        for chain in chains:
            logger.info(
                f"[ChainAnalyzer] {chain.kind.value}: step {chain.root.index} -> {chain.dependent_indexes}"
            )
        return chains

    def cascade_proposals(self, chains: Sequence[Chain]) -> Dict[int, FixProposal]:
        """Forced skip proposals for every chain dependent, by step index."""
        proposals: Dict[int, FixProposal] = {}
        for chain in chains:
            for dependent in chain.dependents:
                proposals[dependent.index] = cascading_skip(chain, dependent, self.constants.chain_skip)
        return proposals

    def _collect(
        self,
        kind: ChainKind,
        failures: List[FailureRecord],
        claimed: Set[int],
        is_root: Callable[[FailureRecord], bool],
        is_dependent: Callable[[FailureRecord, FailureRecord], bool],
    ) -> List[Chain]:
        chains = []
        for root in failures:
            if not root.reached or root.index in claimed or not is_root(root):
                continue
            dependents = [
                f for f in failures
                if f.index > root.index and f.index not in claimed and is_dependent(root, f)
            ]
            if not dependents:
                continue
            claimed.add(root.index)
            claimed.update(d.index for d in dependents)
            chains.append(Chain(kind=kind, root=root, dependents=dependents, severity=SEVERITY[kind]))
        return chains

    def _navigation_chains(self, failures, claimed):
        def is_root(f: FailureRecord) -> bool:
            if f.step.action == ActionKind.WAIT_FOR_URL:
                return True
            return f.step.action == ActionKind.CLICK and _mentions(f.step.target, NAVIGATION_TRIGGERS)

        def is_dependent(root: FailureRecord, f: FailureRecord) -> bool:
            return f.step.action.is_assertion

        return self._collect(ChainKind.NAVIGATION, failures, claimed, is_root, is_dependent)

    def _input_type_chains(self, failures, claimed):
        def is_root(f: FailureRecord) -> bool:
            return f.kind == ErrorKind.WRONG_ELEMENT_TYPE

        def is_dependent(root: FailureRecord, f: FailureRecord) -> bool:
            if f.step.action not in (ActionKind.FILL, ActionKind.SELECT_OPTION):
                return False
            return is_related_input(field_name(root.step.target), field_name(f.step.target))

        return self._collect(ChainKind.INPUT_TYPE, failures, claimed, is_root, is_dependent)

    def _required_field_chains(self, failures, claimed):
        def is_root(f: FailureRecord) -> bool:
            if f.step.action != ActionKind.FILL:
                return False
            if f.kind not in (ErrorKind.DYNAMIC_LOADING_TIMEOUT, ErrorKind.ELEMENT_NOT_FOUND):
                return False
            return self._is_required(f)

        def is_dependent(root: FailureRecord, f: FailureRecord) -> bool:
            return f.step.action == ActionKind.CLICK and _mentions(f.step.target, SUBMIT_TRIGGERS)

        return self._collect(ChainKind.REQUIRED_FIELD, failures, claimed, is_root, is_dependent)

    def _ui_interference_chains(self, failures, claimed):
        window = self.constants.interference_window

        def is_root(f: FailureRecord) -> bool:
            return f.kind == ErrorKind.UI_INTERFERENCE

        def is_dependent(root: FailureRecord, f: FailureRecord) -> bool:
            if f.step.action not in (ActionKind.CLICK, ActionKind.FILL):
                return False
            return f.index - root.index <= window

        return self._collect(ChainKind.UI_INTERFERENCE, failures, claimed, is_root, is_dependent)

    @staticmethod
    def _is_required(failure: FailureRecord) -> bool:
        """
        Required unless the live element says otherwise.

        The label wins when it says so explicitly; without a live element
        to inspect the field is assumed required.
        """
        if _REQUIRED_LABEL.search(failure.step.label.lower()):
            return True
        descriptor = failure.resolution.descriptor if failure.resolution else None
        if descriptor is None:
            return True
        return "required" in descriptor.attributes or descriptor.attributes.get("aria-required") == "true"
