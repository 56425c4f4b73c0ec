"""
Driver Factory - Chrome WebDriver creation for repair sessions.

A repair pass needs exactly one browser session. Failing to open it is one
of the two fatal errors of a run, so every failure here surfaces as
BrowserSessionError.
"""

from typing import Optional

from selenium import webdriver
from selenium.common.exceptions import WebDriverException
from selenium.webdriver.chrome.options import Options as ChromeOptions

from remedy.core.errors import BrowserSessionError

# Type alias for driver - can be extended to support other browsers
WebDriverType = webdriver.Chrome


def create_driver(
    headless: bool = True,
    profile_path: Optional[str] = None,
    page_load_timeout: int = 30,
    window_size: str = "1920,1080",
) -> WebDriverType:
    """
    Create a Chrome WebDriver for probing and re-running routes.

    Args:
        headless: Run browser in headless mode
        profile_path: Path to browser profile for session persistence
        page_load_timeout: Seconds before driver.get() gives up
        window_size: Viewport size; visibility probes depend on it

    Returns:
        Chrome WebDriver instance

    Raises:
        BrowserSessionError: If Chrome cannot be started.

    Example:
        >>> driver = create_driver(headless=True)
        >>> driver.get("https://example.com")
    """
    options = ChromeOptions()

    if headless:
        options.add_argument("--headless=new")

    if profile_path:
        options.add_argument(f"--user-data-dir={profile_path}")

    # Common stability options
    options.add_argument(f"--window-size={window_size}")
    options.add_argument("--disable-extensions")
    options.add_argument("--no-sandbox")
    options.add_argument("--disable-dev-shm-usage")
    options.add_argument("--disable-gpu")
    options.add_experimental_option("excludeSwitches", ["enable-automation"])

    try:
        driver = webdriver.Chrome(options=options)
    except WebDriverException as e:
        raise BrowserSessionError(f"Could not start Chrome: {e.msg}") from e

    driver.set_page_load_timeout(page_load_timeout)
    return driver
