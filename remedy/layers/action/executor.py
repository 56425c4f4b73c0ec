"""
Route Runner - Re-execute a repaired Route.

Runs each step against a live Selenium session so the outcome of every
applied fix becomes known and can be fed back into the pattern store.
Execution stops at the first failing step; the remaining steps stay
``pending``, exactly like a recorded run.
"""

from dataclasses import replace
import logging
import os
import time
from typing import Callable, Dict, List, Optional, TYPE_CHECKING

from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.common.action_chains import ActionChains
from selenium.webdriver.common.keys import Keys
from selenium.webdriver.support import expected_conditions as EC
from selenium.webdriver.support.ui import Select, WebDriverWait

from remedy.core.models import ActionKind, Route, RunResult, Step, StepStatus
from remedy.layers.sense.probe_driver import to_locator

if TYPE_CHECKING:
    from selenium.webdriver.remote.webdriver import WebDriver
    from selenium.webdriver.remote.webelement import WebElement

logger = logging.getLogger(__name__)


class StepFailed(Exception):
    """Raised inside the runner when a step does not complete."""


class RouteRunner:
    """
    Execute Routes step by step with stability waits.

    Steps carry execution modifiers set by the repair compiler:
    ``scroll_before_action``, ``wait_for_visible``, ``force`` (JavaScript
    fallback instead of a native event) and ``timeout_ms``.

    Example:
        >>> runner = RouteRunner(driver, timeout=10)
        >>> result = runner.run(repaired_route)
        >>> result.failed_count
        0
    """

    def __init__(self, driver: "WebDriver", timeout: int = 10, recorder: Optional[object] = None):
        """
        Initialize the route runner.

        Args:
            driver: Selenium WebDriver
            timeout: Default per-step wait in seconds
            recorder: Optional FlightRecorder for logging
        """
        self.driver = driver
        self.timeout = timeout
        self.recorder = recorder
        self._handlers: Dict[ActionKind, Callable[[Step], None]] = {
            ActionKind.LOAD: self._load,
            ActionKind.CLICK: self._click,
            ActionKind.DOUBLE_CLICK: self._double_click,
            ActionKind.HOVER: self._hover,
            ActionKind.FILL: self._fill,
            ActionKind.KEY_PRESS: self._key_press,
            ActionKind.FOCUS: self._focus,
            ActionKind.BLUR: self._blur,
            ActionKind.CHECK: self._check,
            ActionKind.UNCHECK: self._uncheck,
            ActionKind.SELECT_OPTION: self._select_option,
            ActionKind.SET_INPUT_FILES: self._set_input_files,
            ActionKind.SCROLL: self._scroll,
            ActionKind.ASSERT_VISIBLE: self._assert_visible,
            ActionKind.ASSERT_TEXT: self._assert_text,
            ActionKind.WAIT_FOR_SELECTOR: self._wait_for_selector,
            ActionKind.WAIT_FOR_URL: self._wait_for_url,
            ActionKind.WAIT_FOR_LOAD_STATE: lambda step: self._wait_for_stability(self._timeout_for(step)),
            ActionKind.WAIT_FOR_TIMEOUT: self._wait_for_timeout,
            ActionKind.EVALUATE: lambda step: self.driver.execute_script(step.target),
            ActionKind.SCREENSHOT: self._screenshot,
            ActionKind.SKIP: lambda step: None,
        }

    def run(self, route: Route) -> RunResult:
        results: List[Step] = []
        failed = False
        for index, step in enumerate(route.steps):
            if failed:
                results.append(replace(step, status=StepStatus.PENDING, error=None))
                continue
            if step.action == ActionKind.SKIP:
                results.append(replace(step, status=StepStatus.SKIPPED, error=None))
                continue
            try:
                self.execute(step)
                results.append(replace(step, status=StepStatus.PASSED, error=None))
            except (StepFailed, WebDriverException) as e:
                message = e.msg if isinstance(e, WebDriverException) else str(e)
                logger.warning(f"[RouteRunner] Step {index} '{step.label}' failed: {message}")
                if self.recorder:
                    self.recorder.log_action_result(index, False, message)
                results.append(replace(step, status=StepStatus.FAILED, error=message))
                failed = True

        failed_count = sum(1 for s in results if s.is_failed)
        return RunResult(
            route_id=route.route_id,
            steps=tuple(results),
            failed_count=failed_count,
            total_steps=len(results),
        )

    def execute(self, step: Step) -> None:
        """Execute one step. Raises StepFailed or WebDriverException."""
        self._handlers[step.action](step)
        self._wait_for_stability()

    def _timeout_for(self, step: Step) -> float:
        if step.timeout_ms:
            return step.timeout_ms / 1000
        return self.timeout

    def _element(self, step: Step) -> "WebElement":
        """Locate the step's target, honouring wait_for_visible."""
        locator = to_locator(step.target)
        condition = EC.visibility_of_element_located if step.wait_for_visible else EC.presence_of_element_located
        try:
            element = WebDriverWait(self.driver, self._timeout_for(step)).until(condition(locator))
        except TimeoutException:
            raise StepFailed(f"Timeout {int(self._timeout_for(step) * 1000)}ms exceeded waiting for {step.target}")
        if step.scroll_before_action:
            self._scroll_into_view(element)
        return element

    def _load(self, step: Step) -> None:
        self.driver.get(step.target)

    def _click(self, step: Step) -> None:
        element = self._element(step)
        if step.force:
            self.driver.execute_script("arguments[0].click();", element)
            return
        element.click()

    def _double_click(self, step: Step) -> None:
        ActionChains(self.driver).double_click(self._element(step)).perform()

    def _hover(self, step: Step) -> None:
        ActionChains(self.driver).move_to_element(self._element(step)).perform()

    def _fill(self, step: Step) -> None:
        element = self._element(step)
        value = step.value or ""
        if step.force:
            self.driver.execute_script(
                "arguments[0].value = arguments[1];"
                "arguments[0].dispatchEvent(new Event('input', {bubbles: true}));"
                "arguments[0].dispatchEvent(new Event('change', {bubbles: true}));",
                element, value,
            )
            return
        element.clear()
        element.send_keys(value)

    def _key_press(self, step: Step) -> None:
        key = step.value or "Enter"
        self._element(step).send_keys(getattr(Keys, key.upper(), key))

    def _focus(self, step: Step) -> None:
        self.driver.execute_script("arguments[0].focus();", self._element(step))

    def _blur(self, step: Step) -> None:
        self.driver.execute_script("arguments[0].blur();", self._element(step))

    def _check(self, step: Step) -> None:
        element = self._element(step)
        if element.is_selected():
            return
        if step.force:
            self.driver.execute_script("arguments[0].click();", element)
        else:
            element.click()
        if not element.is_selected():
            raise StepFailed(f"{step.target} did not become checked")

    def _uncheck(self, step: Step) -> None:
        element = self._element(step)
        if not element.is_selected():
            return
        if step.force:
            self.driver.execute_script("arguments[0].click();", element)
        else:
            element.click()
        if element.is_selected():
            raise StepFailed(f"{step.target} did not become unchecked")

    def _select_option(self, step: Step) -> None:
        select = Select(self._element(step))
        value = step.value or ""
        try:
            select.select_by_value(value)
        except WebDriverException:
            select.select_by_visible_text(value)

    def _set_input_files(self, step: Step) -> None:
        element = self._element(step)
        element.send_keys(os.path.abspath(step.value or ""))

    def _scroll(self, step: Step) -> None:
        if step.target == "bottom":
            self.driver.execute_script("window.scrollTo(0, document.body.scrollHeight);")
        elif step.target == "top":
            self.driver.execute_script("window.scrollTo(0, 0);")
        else:
            self._scroll_into_view(self._element(replace(step, scroll_before_action=False)))

    def _assert_visible(self, step: Step) -> None:
        self._element(replace(step, wait_for_visible=True))

    def _assert_text(self, step: Step) -> None:
        locator = to_locator(step.target)
        expected = step.value or ""
        try:
            WebDriverWait(self.driver, self._timeout_for(step)).until(
                EC.text_to_be_present_in_element(locator, expected)
            )
        except TimeoutException:
            raise StepFailed(f"Text '{expected}' not found in {step.target}")

    def _wait_for_selector(self, step: Step) -> None:
        self._element(step)

    def _wait_for_url(self, step: Step) -> None:
        pattern = step.target.replace("**", "")
        try:
            WebDriverWait(self.driver, self._timeout_for(step)).until(EC.url_contains(pattern))
        except TimeoutException:
            raise StepFailed(f"URL did not match {step.target}; at {self.driver.current_url}")

    def _wait_for_timeout(self, step: Step) -> None:
        raw = step.value or step.target or "1000"
        try:
            time.sleep(int(raw) / 1000)
        except ValueError:
            raise StepFailed(f"waitForTimeout needs milliseconds, got {raw!r}")

    def _screenshot(self, step: Step) -> None:
        path = step.value or step.target or f"screenshot_{int(time.time() * 1000)}.png"
        if not self.driver.save_screenshot(path):
            raise StepFailed(f"Could not save screenshot to {path}")

    def _scroll_into_view(self, element: "WebElement") -> None:
        self.driver.execute_script(
            "arguments[0].scrollIntoView({behavior: 'instant', block: 'center'});",
            element,
        )
        time.sleep(0.3)

    def _wait_for_stability(self, timeout: float = 5.0) -> None:
        """Wait for document.readyState; best effort."""
        try:
            WebDriverWait(self.driver, timeout).until(
                lambda d: d.execute_script("return document.readyState") == "complete"
            )
        except TimeoutException:
            logger.debug("[RouteRunner] Page did not settle before the next step")
