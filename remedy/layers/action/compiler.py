"""
Route Repair Compiler - Emit a repaired Route.

Per step the compiler moves through
``Unverified -> Probed -> Classified -> {FixChosen -> Rewritten | NoFix -> Skipped}``;
by the time a step reaches the compiler the first three states are done and
only the rewrite remains. The original Route is never modified: a new Route
with a fresh id and a back-reference is produced instead.
"""

from dataclasses import replace
from datetime import datetime
import logging
import re
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from remedy.core.config import RepairConstants
from remedy.core.models import (
    ActionKind,
    AppliedFix,
    Chain,
    FailureRecord,
    FixKind,
    FixProposal,
    FixSummary,
    Route,
    Step,
    StepStatus,
)
from remedy.layers.intelligence.chains import cascading_skip

logger = logging.getLogger(__name__)

SIMPLE_FIX_KINDS = (
    FixKind.ACTION_CORRECTION,
    FixKind.WAIT_THEN_RETRY,
    FixKind.FORCE_ACTION,
    FixKind.SCROLL_THEN_RETRY,
)


class RouteRepairCompiler:
    """
    Apply one chosen fix per failed step and build the repaired Route.

    Example:
        >>> compiler = RouteRepairCompiler()
        >>> repaired = compiler.compile(route, failures, choices, chains)
        >>> repaired.original_route_id == route.route_id
        True
    """

    def __init__(
        self,
        constants: Optional[RepairConstants] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.constants = constants or RepairConstants()
        self._clock = clock or datetime.now

    def compile(
        self,
        route: Route,
        failures: Sequence[FailureRecord],
        choices: Mapping[int, FixProposal],
        chains: Sequence[Chain] = (),
    ) -> Route:
        """
        Args:
            route: The Route that was run.
            failures: Failed and unreached steps, as diagnosed this pass.
            choices: The chosen proposal per failed step index.
            chains: Chains found among ``failures``; their dependents are
                skipped regardless of ``choices``.
        """
        claimed: Dict[int, Tuple[Chain, FailureRecord]] = {
            dependent.index: (chain, dependent)
            for chain in chains
            for dependent in chain.dependents
        }
        failed = {f.index: f for f in failures if f.reached}

        steps: List[Step] = []
        applied: List[AppliedFix] = []
        # (old value, new value, step index, confidence) from rewritten fills
        rewrites: List[Tuple[str, str, int, float]] = []

        for index, recorded in enumerate(route.steps):
            step = recorded.as_recorded()

            if index in claimed:
                chain, failure = claimed[index]
                proposal = cascading_skip(chain, failure, self.constants.chain_skip)
            elif index in failed:
                failure = failed[index]
                proposal = choices.get(index) or self._no_proposal(step)
            else:
                steps.append(self._keep_consistent(index, step, rewrites, applied))
                continue

            new_step = self._rewrite(step, proposal)
            steps.append(new_step)
            applied.append(AppliedFix(
                step_index=index,
                original_action=step.action,
                new_action=new_step.action,
                kind=proposal.kind,
                description=proposal.rationale,
                original_target=step.target,
                confidence=proposal.confidence,
                error_kind=failure.kind,
                source=proposal.source,
            ))
            if step.action == ActionKind.FILL and new_step.action == ActionKind.FILL \
                    and step.value and new_step.value and new_step.value != step.value:
                rewrites.append((step.value, new_step.value, index, proposal.confidence))

        origin = route.original_route_id or route.route_id
        now = self._clock()
        repaired = Route(
            route_id=f"fixed_{origin}_{now.strftime('%Y%m%d%H%M%S')}",
            steps=tuple(steps),
            user_story_id=route.user_story_id,
            generated_at=route.generated_at,
            is_fixed_route=True,
            original_route_id=origin,
            fix_timestamp=now.isoformat(),
            fix_summary=self._summarize(len(steps), applied),
            applied_fixes=tuple(applied),
            dom_snapshot=route.dom_snapshot,
        )
        logger.info(
            f"[RouteRepairCompiler] {repaired.route_id}: "
            f"{repaired.fix_summary.fixed_steps} fixed, {repaired.fix_summary.skipped_steps} skipped"
        )
        return repaired

    @staticmethod
    def _rewrite(step: Step, proposal: FixProposal) -> Step:
        resulting = proposal.resulting_step
        return replace(
            resulting,
            label=step.label,
            status=StepStatus.PENDING,
            error=None,
            original_action=step.action,
            original_target=step.target,
            original_value=step.value if resulting.value != step.value else None,
            fix_reason=proposal.rationale,
            fix_kind=proposal.kind,
            fix_confidence=proposal.confidence,
        )

    @staticmethod
    def _no_proposal(step: Step) -> FixProposal:
        return FixProposal(
            kind=FixKind.SKIP,
            confidence=0.0,
            rationale="no fix was proposed for this step",
            resulting_step=replace(step, action=ActionKind.SKIP),
            source="fallback",
        )

    @staticmethod
    def _keep_consistent(
        index: int,
        step: Step,
        rewrites: List[Tuple[str, str, int, float]],
        applied: List[AppliedFix],
    ) -> Step:
        """Carry earlier fill value rewrites into assertions that embed them."""
        if step.action not in (ActionKind.ASSERT_VISIBLE, ActionKind.ASSERT_TEXT):
            return step
        target = step.target
        sources = []
        for old, new, source_index, confidence in rewrites:
            # Whole values only: "1" must not match inside "Step 10"
            pattern = r"(?<!\w)" + re.escape(old) + r"(?!\w)"
            target, count = re.subn(pattern, lambda _: new, target)
            if count:
                sources.append((source_index, confidence))
        if target == step.target:
            return step

        source_index, confidence = sources[-1]
        reason = f"kept consistent with the value rewritten at step {source_index}"
        applied.append(AppliedFix(
            step_index=index,
            original_action=step.action,
            new_action=step.action,
            kind=FixKind.ACTION_CORRECTION,
            description=reason,
            original_target=step.target,
            confidence=confidence,
            source="consistency",
        ))
        return replace(
            step,
            target=target,
            original_action=step.action,
            original_target=step.target,
            fix_reason=reason,
            fix_kind=FixKind.ACTION_CORRECTION,
            fix_confidence=confidence,
        )

    @staticmethod
    def _summarize(total_steps: int, applied: Sequence[AppliedFix]) -> FixSummary:
        repairs = [f for f in applied if f.source != "consistency"]
        return FixSummary(
            total_steps=total_steps,
            fixed_steps=sum(1 for f in repairs if f.source != "fallback"),
            skipped_steps=sum(1 for f in repairs if f.kind == FixKind.SKIP),
            alternative_selectors=sum(1 for f in repairs if f.kind == FixKind.ALTERNATIVE_SELECTOR),
            simple_fixes=sum(1 for f in repairs if f.kind in SIMPLE_FIX_KINDS),
            unresolved_steps=sum(1 for f in repairs if f.source == "fallback"),
        )
