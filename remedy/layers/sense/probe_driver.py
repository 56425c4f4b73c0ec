"""
Probe Driver - Read-only access to the live page.

Defines the narrow automation contract the repair engine consumes, plus a
Selenium implementation. Route selectors are recorded in a Playwright-like
dialect (``text="Send"``, ``button:has-text("Send")``), so the Selenium
driver translates those forms to XPath and treats everything else as CSS.
"""

from abc import ABC, abstractmethod
import logging
import re
from typing import List, Optional, Tuple, TYPE_CHECKING

from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.common.action_chains import ActionChains
from selenium.webdriver.common.by import By
from selenium.webdriver.support import expected_conditions as EC
from selenium.webdriver.support.ui import WebDriverWait

from remedy.core.errors import DriverError
from remedy.core.models import ElementDescriptor

if TYPE_CHECKING:
    from selenium.webdriver.remote.webdriver import WebDriver
    from selenium.webdriver.remote.webelement import WebElement

logger = logging.getLogger(__name__)

_TEXT_SELECTOR = re.compile(r'^text=(?:"(?P<dq>.*)"|\'(?P<sq>.*)\'|(?P<bare>.+))$')
_HAS_TEXT_SELECTOR = re.compile(
    r'^(?P<tag>[A-Za-z][\w-]*)?:has-text\((?P<quote>["\'])(?P<text>.*)(?P=quote)\)$'
)


def xpath_literal(value: str) -> str:
    """Quote a string for use inside an XPath expression."""
    if '"' not in value:
        return f'"{value}"'
    if "'" not in value:
        return f"'{value}'"
    parts = value.split('"')
    return "concat(" + ", '\"', ".join(f'"{p}"' for p in parts) + ")"


def to_locator(selector: str) -> Tuple[str, str]:
    """
    Translate a recorded selector into a Selenium (By, value) locator.

    Example:
        >>> to_locator('button:has-text("Send")')
        ('xpath', '//button[contains(normalize-space(.), "Send")]')
    """
    selector = selector.strip()
    if selector.startswith("xpath="):
        return By.XPATH, selector[len("xpath="):]
    if selector.startswith("//") or selector.startswith("(//"):
        return By.XPATH, selector
    if selector.startswith("css="):
        return By.CSS_SELECTOR, selector[len("css="):]

    text_match = _TEXT_SELECTOR.match(selector)
    if text_match:
        text = text_match.group("dq") or text_match.group("sq") or text_match.group("bare") or ""
        return By.XPATH, f"//*[normalize-space(text())={xpath_literal(text.strip())}]"

    has_text = _HAS_TEXT_SELECTOR.match(selector)
    if has_text:
        tag = has_text.group("tag") or "*"
        literal = xpath_literal(has_text.group("text"))
        return By.XPATH, f"//{tag}[contains(normalize-space(.), {literal})]"

    return By.CSS_SELECTOR, selector


class ProbeDriver(ABC):
    """
    Automation collaborator used by the Selector Resolver.

    Implementations raise DriverError for navigation or probe failures.
    None of the methods may change page state beyond hovering.
    """

    @property
    @abstractmethod
    def current_url(self) -> str:
        pass

    @abstractmethod
    def navigate(self, url: str) -> None:
        pass

    @abstractmethod
    def locator_count(self, selector: str) -> int:
        pass

    @abstractmethod
    def is_visible(self, selector: str) -> bool:
        pass

    @abstractmethod
    def is_enabled(self, selector: str) -> bool:
        pass

    @abstractmethod
    def hover_probe(self, selector: str, timeout_ms: int) -> bool:
        """Return True when the first match can be hovered and receives the pointer."""
        pass

    @abstractmethod
    def dom_snapshot(self) -> List[ElementDescriptor]:
        pass


class SeleniumProbeDriver(ProbeDriver):
    """
    ProbeDriver backed by a Selenium WebDriver.

    Example:
        >>> probe = SeleniumProbeDriver(create_driver(headless=True))
        >>> probe.navigate("https://example.com/contact")
        >>> probe.locator_count('[name="email"]')
        1
    """

    def __init__(self, driver: "WebDriver", page_load_timeout: int = 30):
        self.driver = driver
        self.page_load_timeout = page_load_timeout

    @property
    def current_url(self) -> str:
        try:
            return self.driver.current_url
        except WebDriverException as e:
            raise DriverError(f"Could not read current URL: {e.msg}")

    def navigate(self, url: str) -> None:
        try:
            self.driver.get(url)
            WebDriverWait(self.driver, self.page_load_timeout).until(
                lambda d: d.execute_script("return document.readyState") == "complete"
            )
        except TimeoutException:
            # Slow pages still get probed; readyState is best effort
            logger.warning(f"[ProbeDriver] {url} did not reach readyState=complete")
        except WebDriverException as e:
            raise DriverError(f"Navigation to {url} failed: {e.msg}")

    def locator_count(self, selector: str) -> int:
        return len(self._find_all(selector))

    def is_visible(self, selector: str) -> bool:
        element = self._first(selector)
        if element is None:
            return False
        try:
            return element.is_displayed()
        except WebDriverException as e:
            raise DriverError(f"Visibility probe failed: {e.msg}", selector)

    def is_enabled(self, selector: str) -> bool:
        element = self._first(selector)
        if element is None:
            return False
        try:
            return element.is_enabled()
        except WebDriverException as e:
            raise DriverError(f"Enablement probe failed: {e.msg}", selector)

    def hover_probe(self, selector: str, timeout_ms: int) -> bool:
        locator = to_locator(selector)
        try:
            element = WebDriverWait(self.driver, timeout_ms / 1000).until(
                EC.element_to_be_clickable(locator)
            )
            ActionChains(self.driver).move_to_element(element).perform()
            return bool(self.driver.execute_script(_RECEIVES_POINTER_SCRIPT, element))
        except TimeoutException:
            return False
        except WebDriverException as e:
            logger.debug(f"[ProbeDriver] Hover on {selector} failed: {e.msg}")
            return False

    def dom_snapshot(self) -> List[ElementDescriptor]:
        try:
            results = self.driver.execute_script(_SNAPSHOT_SCRIPT) or []
        except WebDriverException as e:
            raise DriverError(f"DOM snapshot failed: {e.msg}")
        return [ElementDescriptor.from_dict(item) for item in results]

    def _find_all(self, selector: str) -> List["WebElement"]:
        by, value = to_locator(selector)
        try:
            return self.driver.find_elements(by, value)
        except WebDriverException as e:
            raise DriverError(f"Locator failed: {e.msg}", selector)

    def _first(self, selector: str) -> Optional["WebElement"]:
        elements = self._find_all(selector)
        return elements[0] if elements else None


_RECEIVES_POINTER_SCRIPT = r"""
const el = arguments[0];
const rect = el.getBoundingClientRect();
const top = document.elementFromPoint(rect.left + rect.width / 2, rect.top + rect.height / 2);
return !!top && (top === el || el.contains(top));
"""

_SNAPSHOT_SCRIPT = r"""
const nodes = document.querySelectorAll(
    'input, select, textarea, button, a[href], [role="button"], [role="link"]'
);
const isVisible = (el) => {
    if (el.checkVisibility) return el.checkVisibility();
    const rect = el.getBoundingClientRect();
    return rect.width > 0 && rect.height > 0;
};
return Array.from(nodes).slice(0, 1000).map(el => {
    const rect = el.getBoundingClientRect();
    const attrs = {};
    for (const attr of ['class', 'role', 'placeholder', 'aria-label', 'title', 'value', 'required', 'aria-required', 'href']) {
        const val = el.getAttribute(attr);
        if (val !== null) attrs[attr] = val.substring(0, 150);
    }
    const options = el.tagName === 'SELECT'
        ? Array.from(el.options).map(o => ({value: o.value, text: (o.text || '').trim()}))
        : [];
    return {
        tagName: el.tagName.toLowerCase(),
        inputType: el.getAttribute('type'),
        name: el.getAttribute('name'),
        id: el.id || null,
        text: (el.innerText || el.value || '').substring(0, 200).trim(),
        attributes: attrs,
        visible: isVisible(el),
        enabled: !el.disabled,
        options: options,
        boundingBox: {x: rect.left, y: rect.top, width: rect.width, height: rect.height}
    };
});
"""
