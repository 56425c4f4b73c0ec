"""
Repair Engine - The Master Controller.

Runs one repair pass per failed route:

1. SENSE: Navigate to each failed step's page and probe its target.
2. DIAGNOSE: Classify every failure and group cascades into chains.
3. DECIDE: Pick one fix per failed step (learned, ranked or AI-assisted).
4. COMPILE: Emit a repaired route next to the original one.

Optionally the repaired route is re-run straight away so the outcome of each
fix can be fed back into the pattern store.
"""

from dataclasses import dataclass, field
from datetime import datetime
import logging
import os
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

from remedy.core.config import RepairConfig, RepairConstants
from remedy.core.driver_factory import create_driver, WebDriverType
from remedy.core.errors import DriverError, LanguageModelUnavailable
from remedy.core.models import (
    ActionKind,
    Chain,
    ElementDescriptor,
    ErrorKind,
    FailureRecord,
    FixKind,
    FixProposal,
    PatternKey,
    Resolution,
    Route,
    RunResult,
    StepStatus,
)
from remedy.core.route_io import (
    find_latest_result,
    is_unreached,
    load_results,
    load_route,
    pair_steps,
    repaired_route_path,
    resolve_route,
    route_from_result,
    save_result,
    save_route,
)
from remedy.layers.action.compiler import RouteRepairCompiler
from remedy.layers.action.executor import RouteRunner
from remedy.layers.intelligence.ai_advisor import AIFixAdvisor
from remedy.layers.intelligence.chains import ChainAnalyzer
from remedy.layers.intelligence.classifier import FailureClassifier
from remedy.layers.intelligence.language import CloudLanguageModel, LanguageModel
from remedy.layers.intelligence.ranker import FixRanker
from remedy.layers.memory import JsonPatternStore, PatternStore
from remedy.layers.sense.dom_snapshot import StructureDrift, detect_structure_drift
from remedy.layers.sense.probe_driver import ProbeDriver, SeleniumProbeDriver
from remedy.layers.sense.selector_resolver import SelectorResolver
from remedy.reporters import FlightRecorder

logger = logging.getLogger(__name__)

UNREACHED_ERROR = "step was not reached because an earlier step failed"


def record_fix_outcomes(pattern_store: PatternStore, repaired: Route, result: RunResult) -> int:
    """
    Record the real-world outcome of each fix applied in ``repaired``.

    Only fixes whose step actually ran are recorded: skips always "pass",
    and unreached steps say nothing about the fix.

    Returns:
        Number of pattern-store entries written.
    """
    outcomes = {index: outcome for index, _, outcome in pair_steps(repaired, result)}
    recorded = 0
    for fix in repaired.applied_fixes:
        if fix.kind == FixKind.SKIP or fix.source in ("fallback", "consistency"):
            continue
        outcome = outcomes.get(fix.step_index)
        if is_unreached(outcome) or fix.step_index >= len(repaired.steps):
            continue
        payload = FixProposal(
            kind=fix.kind,
            confidence=fix.confidence,
            rationale=fix.description,
            resulting_step=repaired.steps[fix.step_index],
        ).fix_payload()
        key = PatternKey(fix.original_action, fix.original_target, fix.error_kind)
        pattern_store.record(key, payload, success=outcome.status == StepStatus.PASSED)
        recorded += 1
    return recorded


@dataclass
class RepairOutcome:
    """Everything one repair pass produced for a single route."""
    route: Route
    repaired: Route
    failures: List[FailureRecord]
    chains: List[Chain]
    drift: StructureDrift
    ai_fallback: bool = False
    path: Optional[str] = None
    rerun: Optional[RunResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "route_id": self.route.route_id,
            "repaired_route_id": self.repaired.route_id,
            "path": self.path,
            "failures": [f.to_dict() for f in self.failures],
            "chains": [c.to_dict() for c in self.chains],
            "drift": self.drift.to_dict(),
            "ai_fallback": self.ai_fallback,
            "fix_summary": self.repaired.fix_summary.to_dict() if self.repaired.fix_summary else None,
            "rerun_failed_count": self.rerun.failed_count if self.rerun else None,
        }


@dataclass
class RepairReport:
    """Result of a RepairEngine run."""
    url: str
    goal: str
    outcomes: List[RepairOutcome]
    start_time: datetime
    end_time: datetime
    confirmed_fixes: int = 0
    report_path: Optional[str] = None
    skipped_routes: List[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    @property
    def unresolved_steps(self) -> int:
        return sum(
            o.repaired.fix_summary.unresolved_steps
            for o in self.outcomes
            if o.repaired.fix_summary
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "goal": self.goal,
            "duration_seconds": self.duration_seconds,
            "outcomes": [o.to_dict() for o in self.outcomes],
            "confirmed_fixes": self.confirmed_fixes,
            "skipped_routes": self.skipped_routes,
            "report_path": self.report_path,
        }


class RepairEngine:
    """
    Master controller for route repair.

    Every collaborator can be injected; anything left out is built from the
    configuration (Chrome via Selenium, a JSON pattern store under the
    results directory, a cloud language model when AI is enabled).

    Example:
        >>> engine = RepairEngine(
        ...     url="https://example.com/contact",
        ...     goal="Submit the contact form",
        ...     results_dir="./test-results",
        ... )
        >>> report = engine.run()
        >>> print(report.outcomes[0].repaired.fix_summary)
    """

    def __init__(
        self,
        url: str,
        goal: str = "",
        results_dir: str = "./test-results",
        result_file: Optional[str] = None,
        route_file: Optional[str] = None,
        enable_ai: bool = False,
        auto_execute: bool = False,
        headless: bool = True,
        ai_model: Optional[str] = None,
        ai_provider: str = "auto",
        ai_timeout: float = 30.0,
        patterns_file: Optional[str] = None,
        report_dir: str = "./remedy_reports",
        timeout: int = 10,
        constants: Optional[RepairConstants] = None,
        probe_driver: Optional[ProbeDriver] = None,
        pattern_store: Optional[PatternStore] = None,
        language_model: Optional[LanguageModel] = None,
        recorder: Optional[FlightRecorder] = None,
        runner: Optional[RouteRunner] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the repair engine.

        Args:
            enable_ai: Ask a language model for fixes before the local ranker
            auto_execute: Re-run each repaired route and record fix outcomes
            ai_provider: "auto", "openai" or "anthropic"
            ai_timeout: Seconds before a language-model call is abandoned
            patterns_file: Pattern store path (default: <results_dir>/.failure-patterns.json)
            probe_driver: Pre-built ProbeDriver; skips launching Chrome
            clock: Time source for repaired route ids and pattern timestamps
        """
        self.config = RepairConfig(
            url=url,
            goal=goal,
            results_dir=results_dir,
            result_file=result_file,
            route_file=route_file,
            enable_ai=enable_ai,
            auto_execute=auto_execute,
            headless=headless,
            ai_model=ai_model,
            ai_provider=ai_provider,
            ai_timeout=ai_timeout,
            patterns_file=patterns_file,
            report_dir=report_dir,
            timeout=timeout,
            constants=constants or RepairConstants(),
        )
        constants = self.config.constants
        self._clock = clock or datetime.now

        self.pattern_store = pattern_store or JsonPatternStore(
            patterns_file or os.path.join(results_dir, ".failure-patterns.json"),
            max_attempts=constants.max_pattern_attempts,
            clock=self._clock,
        )
        self.recorder = recorder or FlightRecorder(output_dir=report_dir)

        self._driver: Optional[WebDriverType] = None
        self._probe = probe_driver
        self._resolver: Optional[SelectorResolver] = None
        self._language_model = language_model
        self._runner = runner

        self._classifier = FailureClassifier()
        self._ranker = FixRanker(self.pattern_store, constants, self._classifier, intent=goal)
        self._chains = ChainAnalyzer(constants)
        self._compiler = RouteRepairCompiler(constants, clock=self._clock)

        self._initialized = False

    def _initialize(self) -> None:
        """Open the browser session lazily; raises BrowserSessionError."""
        if self._initialized:
            return

        if self._probe is None:
            self._driver = create_driver(headless=self.config.headless)
            self._probe = SeleniumProbeDriver(self._driver)
        self._resolver = SelectorResolver(self._probe, self.config.constants)

        self._initialized = True

    def run(self) -> RepairReport:
        """
        Repair every failed route in the result file.

        Raises:
            ConfigError: Before any browser session starts, if the URL,
                route or result file is missing or malformed.
            BrowserSessionError: If the browser cannot be opened.
        """
        self.config.validate()
        inputs = self._load_inputs()

        self._initialize()
        start_time = datetime.now()
        outcomes: List[RepairOutcome] = []
        skipped: List[str] = []
        confirmed = 0

        try:
            for route, result in inputs:
                if route.is_fixed_route:
                    confirmed += self.confirm(route, result)

                if not result.has_failures:
                    logger.info(f"[RepairEngine] {result.route_id}: no failed steps, nothing to repair")
                    self.recorder.log_info(f"{result.route_id}: all steps passed")
                    skipped.append(result.route_id)
                    continue

                outcome = self.repair(route, result, use_ai=self.config.enable_ai)
                outcome.path = save_route(
                    outcome.repaired, repaired_route_path(self.config.results_dir, outcome.repaired)
                )
                self.recorder.log_route(outcome.repaired, outcome.path)

                if self.config.auto_execute:
                    outcome.rerun = self._rerun(outcome.repaired)
                    if outcome.rerun is not None:
                        confirmed += self.confirm(outcome.repaired, outcome.rerun)
                outcomes.append(outcome)
        finally:
            report_path = self.recorder.generate_report()

        return RepairReport(
            url=self.config.url,
            goal=self.config.goal,
            outcomes=outcomes,
            start_time=start_time,
            end_time=datetime.now(),
            confirmed_fixes=confirmed,
            report_path=report_path,
            skipped_routes=skipped,
        )

    def repair(self, route: Route, result: RunResult, use_ai: bool = False) -> RepairOutcome:
        """
        One repair pass over ``route`` given its ``result``.

        DriverErrors are recovered per step; the pass itself only fails if
        the browser session cannot be opened.
        """
        self._initialize()
        logger.info(f"[RepairEngine] Repairing {route.route_id} ({result.failed_count} failed step(s))")

        failures, page_of, snapshots = self._diagnose(route, result)
        live = [d for snapshot in snapshots.values() for d in snapshot]
        drift = detect_structure_drift(route.dom_snapshot, live)
        if drift.detected:
            logger.info(f"[RepairEngine] Structure drift detected: {drift.to_dict()}")
            self.recorder.log_warning(f"DOM structure changed since {route.route_id} was recorded")

        chains = self._chains.analyze(failures)
        for chain in chains:
            self.recorder.log_chain(chain)
        claimed = {d.index for chain in chains for d in chain.dependents}

        choices, ai_fallback = self._propose(
            failures,
            claimed,
            page_of,
            snapshots,
            use_ai=use_ai,
            fallback_allowed=True,
            drift=drift.detected,
        )
        for index in sorted(choices):
            self.recorder.log_fix(index, choices[index])

        repaired = self._compiler.compile(route, failures, choices, chains)
        return RepairOutcome(
            route=route,
            repaired=repaired,
            failures=failures,
            chains=chains,
            drift=drift,
            ai_fallback=ai_fallback,
        )

    def confirm(self, repaired: Route, result: RunResult) -> int:
        """Record fix outcomes from a run of ``repaired``; returns entries written."""
        recorded = record_fix_outcomes(self.pattern_store, repaired, result)
        if recorded:
            self.recorder.log_info(f"Recorded {recorded} fix outcome(s) from {result.route_id}")
        return recorded

    def _load_inputs(self) -> List[Tuple[Route, RunResult]]:
        """Load results and their routes. Raises ConfigError."""
        result_file = self.config.result_file or find_latest_result(self.config.results_dir)
        logger.info(f"[RepairEngine] Using result file {result_file}")
        results = load_results(result_file)

        explicit = load_route(self.config.route_file) if self.config.route_file else None
        inputs = []
        for result in results:
            if explicit is not None and (len(results) == 1 or explicit.route_id == result.route_id):
                route = explicit
            else:
                route = resolve_route(self.config.results_dir, result)
            if route is None:
                logger.warning(
                    f"[RepairEngine] No route file for {result.route_id}; rebuilding it from the result"
                )
                self.recorder.log_warning(f"Route for {result.route_id} rebuilt from recorded steps")
                route = route_from_result(result)
            inputs.append((route, result))
        return inputs

    def _diagnose(
        self,
        route: Route,
        result: RunResult,
    ) -> Tuple[List[FailureRecord], Dict[int, str], Dict[str, List[ElementDescriptor]]]:
        """Probe and classify every failed step; later steps become unreached records."""
        failures: List[FailureRecord] = []
        page_of: Dict[int, str] = {}
        snapshots: Dict[str, List[ElementDescriptor]] = {}
        seen_failure = False

        for index, step, outcome in pair_steps(route, result):
            if outcome is not None and outcome.is_failed:
                seen_failure = True
                url = self._page_for(route, index)
                page_of[index] = url
                resolution = self._probe_step(step, url, snapshots)
                error_text = outcome.error or ""
                failure = FailureRecord(
                    index=index,
                    step=step,
                    error_text=error_text,
                    kind=self._classifier.classify(step, error_text, resolution),
                    resolution=resolution,
                )
            elif seen_failure and is_unreached(outcome):
                failure = FailureRecord(
                    index=index,
                    step=step,
                    error_text=UNREACHED_ERROR,
                    kind=ErrorKind.UNKNOWN,
                    reached=False,
                )
            else:
                continue
            self.recorder.log_classification(failure)
            failures.append(failure)
        return failures, page_of, snapshots

    def _page_for(self, route: Route, index: int) -> str:
        """URL of the nearest preceding load step, else the configured URL."""
        for step in reversed(route.steps[:index]):
            if step.action == ActionKind.LOAD:
                return step.target
        return self.config.url

    def _probe_step(
        self,
        step,
        url: str,
        snapshots: Dict[str, List[ElementDescriptor]],
    ) -> Resolution:
        try:
            self._navigate(url)
        except DriverError as e:
            logger.warning(f"[RepairEngine] Navigation to {url} failed: {e}")
            self.recorder.log_error(f"Navigation to {url} failed", e)
            return Resolution.unprobed(step.target, str(e))

        if url not in snapshots:
            try:
                snapshots[url] = self._probe.dom_snapshot()
            except DriverError as e:
                logger.warning(f"[RepairEngine] DOM snapshot of {url} failed: {e}")
                snapshots[url] = []
        return self._resolver.resolve(step, snapshots[url])

    def _navigate(self, url: str) -> None:
        """Navigate only when the page is not already there."""
        try:
            current = self._probe.current_url
        except DriverError:
            current = ""
        if current == url:
            return
        self._probe.navigate(url)
        self.recorder.log_navigation(url)

    def _propose(
        self,
        failures: Sequence[FailureRecord],
        claimed: Set[int],
        page_of: Dict[int, str],
        snapshots: Dict[str, List[ElementDescriptor]],
        use_ai: bool,
        fallback_allowed: bool,
        drift: bool = False,
    ) -> Tuple[Dict[int, FixProposal], bool]:
        """
        Choose a fix for every reached, unchained failure.

        Returns the choices and whether the AI path had to fall back. With
        ``fallback_allowed=False`` a LanguageModelUnavailable propagates.
        """
        candidates = [f for f in failures if f.reached and f.index not in claimed]
        if use_ai:
            try:
                return self._propose_with_ai(candidates, page_of, snapshots, drift), False
            except LanguageModelUnavailable as e:
                if not fallback_allowed:
                    raise
                logger.warning(f"[RepairEngine] Language model unavailable ({e}); using local ranking")
                self.recorder.log_warning(f"AI analysis unavailable, falling back to local ranking: {e}")
                choices, _ = self._propose(
                    failures, claimed, page_of, snapshots,
                    use_ai=False, fallback_allowed=False, drift=drift,
                )
                return choices, True

        return {f.index: self._ranker.choose(f, drift=drift) for f in candidates}, False

    def _propose_with_ai(
        self,
        failures: Sequence[FailureRecord],
        page_of: Dict[int, str],
        snapshots: Dict[str, List[ElementDescriptor]],
        drift: bool,
    ) -> Dict[int, FixProposal]:
        """Local choice per failure, overridden by a confident AI proposal."""
        advisor = AIFixAdvisor(
            self._get_language_model(),
            self.config.constants,
            timeout=self.config.ai_timeout,
            pattern_store=self.pattern_store,
        )
        choices: Dict[int, FixProposal] = {}
        for failure in failures:
            local = self._ranker.choose(failure, drift=drift)
            choices[failure.index] = local
            if local.source == "pattern_store":
                continue
            url = page_of.get(failure.index, self.config.url)
            suggestion = advisor.advise(failure, url, self.config.goal, snapshots.get(url, []))
            if suggestion is None:
                continue
            if drift and suggestion.kind != FixKind.SKIP:
                suggestion = suggestion.scaled(self.config.constants.drift_penalty)
            if suggestion.confidence >= self.config.constants.ai_acceptance:
                logger.info(
                    f"[RepairEngine] Step {failure.index}: using AI fix "
                    f"{suggestion.kind.value} ({suggestion.confidence:.2f})"
                )
                choices[failure.index] = suggestion
        return choices

    def _get_language_model(self) -> LanguageModel:
        if self._language_model is None:
            self._language_model = CloudLanguageModel(
                provider=self.config.ai_provider,
                model=self.config.ai_model,
                timeout=self.config.ai_timeout,
            )
        return self._language_model

    def _rerun(self, repaired: Route) -> Optional[RunResult]:
        if self._runner is None:
            if self._driver is None:
                logger.warning("[RepairEngine] No WebDriver available; skipping re-run")
                self.recorder.log_warning(f"Re-run of {repaired.route_id} skipped: no WebDriver")
                return None
            self._runner = RouteRunner(self._driver, timeout=self.config.timeout, recorder=self.recorder)

        logger.info(f"[RepairEngine] Re-running {repaired.route_id}")
        rerun = self._runner.run(repaired)
        save_result(rerun, self.config.results_dir)
        for index, step in enumerate(rerun.steps):
            if step.status == StepStatus.PASSED:
                self.recorder.log_action_result(index, True)
        return rerun

    def close(self) -> None:
        """Release the browser session."""
        if self._driver:
            try:
                self._driver.quit()
            except Exception as e:
                logger.debug(f"[RepairEngine] Error while quitting driver: {e}")
            self._driver = None
            self._probe = None
        self._initialized = False

    def __enter__(self) -> "RepairEngine":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
