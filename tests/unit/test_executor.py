from unittest.mock import MagicMock, patch

import pytest
from selenium.common.exceptions import WebDriverException
from selenium.webdriver.common.by import By
from selenium.webdriver.common.keys import Keys

from remedy.core.models import ActionKind, Route, Step, StepStatus
from remedy.layers.action.executor import RouteRunner


@pytest.fixture
def driver():
    mock = MagicMock()
    mock.execute_script.return_value = "complete"
    mock.find_element.return_value.is_displayed.return_value = True
    return mock


def _route(*steps):
    return Route(route_id="fixed_route_1_20240105120000", steps=tuple(steps))


def test_runs_every_step(driver):
    route = _route(
        Step("Open", ActionKind.LOAD, "https://example.com"),
        Step("Name", ActionKind.FILL, "#name", "John"),
        Step("Send", ActionKind.CLICK, "#send"),
    )

    result = RouteRunner(driver).run(route)

    assert [s.status for s in result.steps] == [StepStatus.PASSED] * 3
    assert result.failed_count == 0
    driver.get.assert_called_once_with("https://example.com")
    driver.find_element.assert_any_call(By.CSS_SELECTOR, "#name")
    driver.find_element.return_value.send_keys.assert_called_with("John")


def test_stops_at_first_failure(driver):
    driver.get.side_effect = WebDriverException("net::ERR_NAME_NOT_RESOLVED")
    route = _route(
        Step("Open", ActionKind.LOAD, "https://nowhere.invalid"),
        Step("Send", ActionKind.CLICK, "#send"),
    )
    recorder = MagicMock()

    result = RouteRunner(driver, recorder=recorder).run(route)

    assert result.steps[0].status == StepStatus.FAILED
    assert "ERR_NAME_NOT_RESOLVED" in result.steps[0].error
    assert result.steps[1].status == StepStatus.PENDING
    assert result.failed_count == 1
    driver.find_element.assert_not_called()
    recorder.log_action_result.assert_called_once()


def test_skip_steps_are_marked_skipped(driver):
    route = _route(Step("Thanks", ActionKind.SKIP, "text=Thanks"))
    result = RouteRunner(driver).run(route)
    assert result.steps[0].status == StepStatus.SKIPPED
    driver.find_element.assert_not_called()


def test_force_click_uses_javascript(driver):
    element = driver.find_element.return_value
    RouteRunner(driver).execute(Step("Send", ActionKind.CLICK, "#send", force=True))
    element.click.assert_not_called()
    driver.execute_script.assert_any_call("arguments[0].click();", element)


def test_scroll_before_action(driver):
    element = driver.find_element.return_value
    RouteRunner(driver).execute(Step("Send", ActionKind.CLICK, "#send", scroll_before_action=True))
    scroll_calls = [c for c in driver.execute_script.call_args_list if "scrollIntoView" in c.args[0]]
    assert len(scroll_calls) == 1
    element.click.assert_called_once()


def test_check_clicks_unchecked_box(driver):
    element = driver.find_element.return_value
    element.is_selected.side_effect = [False, True]
    RouteRunner(driver).execute(Step("Agree", ActionKind.CHECK, '[name="agree"]'))
    element.click.assert_called_once()


def test_check_that_does_not_stick_fails(driver):
    element = driver.find_element.return_value
    element.is_selected.return_value = False
    route = _route(Step("Agree", ActionKind.CHECK, '[name="agree"]'))
    result = RouteRunner(driver).run(route)
    assert result.steps[0].status == StepStatus.FAILED
    assert "did not become checked" in result.steps[0].error


def test_wait_for_url(driver):
    driver.current_url = "https://example.com/contact/thanks"
    RouteRunner(driver).execute(Step("Thanks page", ActionKind.WAIT_FOR_URL, "**/thanks"))


def test_text_selector_becomes_xpath(driver):
    RouteRunner(driver).execute(Step("Thanks", ActionKind.ASSERT_VISIBLE, "text=Thanks"))
    driver.find_element.assert_called_with(By.XPATH, '//*[normalize-space(text())="Thanks"]')


def test_uncheck_clicks_checked_box(driver):
    element = driver.find_element.return_value
    element.is_selected.side_effect = [True, False]
    RouteRunner(driver).execute(Step("Newsletter", ActionKind.UNCHECK, '[name="newsletter"]'))
    element.click.assert_called_once()


def test_uncheck_leaves_clear_box_alone(driver):
    element = driver.find_element.return_value
    element.is_selected.return_value = False
    RouteRunner(driver).execute(Step("Newsletter", ActionKind.UNCHECK, '[name="newsletter"]'))
    element.click.assert_not_called()


@patch("remedy.layers.action.executor.ActionChains")
def test_hover_moves_pointer(chains, driver):
    element = driver.find_element.return_value
    RouteRunner(driver).execute(Step("Menu", ActionKind.HOVER, "#menu"))
    chains.assert_called_once_with(driver)
    chains.return_value.move_to_element.assert_called_once_with(element)
    chains.return_value.move_to_element.return_value.perform.assert_called_once()


def test_key_press_sends_named_key(driver):
    element = driver.find_element.return_value
    RouteRunner(driver).execute(Step("Submit", ActionKind.KEY_PRESS, "#email", "Enter"))
    element.send_keys.assert_called_once_with(Keys.ENTER)


def test_evaluate_runs_script(driver):
    RouteRunner(driver).execute(Step("Reset", ActionKind.EVALUATE, "localStorage.clear()"))
    driver.execute_script.assert_any_call("localStorage.clear()")
    driver.find_element.assert_not_called()


def test_scroll_to_bottom(driver):
    RouteRunner(driver).execute(Step("Down", ActionKind.SCROLL, "bottom"))
    driver.execute_script.assert_any_call("window.scrollTo(0, document.body.scrollHeight);")
    driver.find_element.assert_not_called()


@patch("remedy.layers.action.executor.time.sleep")
def test_wait_for_timeout_sleeps(sleep, driver):
    RouteRunner(driver).execute(Step("Pause", ActionKind.WAIT_FOR_TIMEOUT, "", "500"))
    sleep.assert_called_once_with(0.5)


def test_wait_for_timeout_needs_a_number(driver):
    route = _route(Step("Pause", ActionKind.WAIT_FOR_TIMEOUT, "soon"))
    result = RouteRunner(driver).run(route)
    assert result.steps[0].status == StepStatus.FAILED
    assert "milliseconds" in result.steps[0].error
