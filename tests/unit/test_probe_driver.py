from unittest.mock import MagicMock, patch

import pytest
from selenium.common.exceptions import WebDriverException
from selenium.webdriver.common.by import By

from remedy.core.errors import DriverError
from remedy.layers.sense.probe_driver import SeleniumProbeDriver, to_locator


@pytest.fixture
def webdriver():
    mock = MagicMock()
    element = mock.find_element.return_value
    element.is_displayed.return_value = True
    element.is_enabled.return_value = True
    return mock


def test_locator_count_uses_translated_locator(webdriver):
    webdriver.find_elements.return_value = [MagicMock(), MagicMock()]

    assert SeleniumProbeDriver(webdriver).locator_count('button:has-text("Send")') == 2
    webdriver.find_elements.assert_called_once_with(
        By.XPATH, '//button[contains(normalize-space(.), "Send")]'
    )


def test_locator_failure_is_driver_error(webdriver):
    webdriver.find_elements.side_effect = WebDriverException("invalid selector")

    with pytest.raises(DriverError) as excinfo:
        SeleniumProbeDriver(webdriver).locator_count("#send[")

    assert excinfo.value.selector == "#send["
    assert "invalid selector" in str(excinfo.value)


def test_visibility_of_missing_element(webdriver):
    webdriver.find_elements.return_value = []
    assert SeleniumProbeDriver(webdriver).is_visible("#gone") is False


def test_navigation_failure_is_driver_error(webdriver):
    webdriver.get.side_effect = WebDriverException("net::ERR_CONNECTION_REFUSED")

    with pytest.raises(DriverError, match="ERR_CONNECTION_REFUSED"):
        SeleniumProbeDriver(webdriver).navigate("https://example.com/contact")


@patch("remedy.layers.sense.probe_driver.ActionChains")
def test_hover_probe_reports_pointer_target(chains, webdriver):
    webdriver.execute_script.return_value = True

    assert SeleniumProbeDriver(webdriver).hover_probe("#send", timeout_ms=2000) is True
    chains.return_value.move_to_element.assert_called_once_with(webdriver.find_element.return_value)


@patch("remedy.layers.sense.probe_driver.ActionChains")
def test_hover_probe_failure_is_not_clickable(chains, webdriver):
    chains.return_value.move_to_element.return_value.perform.side_effect = WebDriverException(
        "element click intercepted"
    )
    assert SeleniumProbeDriver(webdriver).hover_probe("#send", timeout_ms=2000) is False


def test_dom_snapshot_builds_descriptors(webdriver):
    webdriver.execute_script.return_value = [
        {"tagName": "input", "inputType": "email", "name": "email", "visible": True, "enabled": True},
        {"tagName": "button", "text": "Send", "visible": True, "enabled": False},
    ]

    snapshot = SeleniumProbeDriver(webdriver).dom_snapshot()

    assert [d.tag_name for d in snapshot] == ["input", "button"]
    assert snapshot[0].name == "email"
    assert snapshot[1].text == "Send"
    assert snapshot[1].enabled is False


def test_dom_snapshot_failure_is_driver_error(webdriver):
    webdriver.execute_script.side_effect = WebDriverException("javascript error")

    with pytest.raises(DriverError, match="DOM snapshot failed"):
        SeleniumProbeDriver(webdriver).dom_snapshot()


def test_text_selectors_become_xpath():
    assert to_locator("text=Thanks") == (By.XPATH, '//*[normalize-space(text())="Thanks"]')
    assert to_locator('text="It\'s here"') == (By.XPATH, '//*[normalize-space(text())="It\'s here"]')
    assert to_locator("#send") == (By.CSS_SELECTOR, "#send")
