from datetime import datetime
from typing import Dict, List, Optional

import pytest

from remedy.core.errors import DriverError
from remedy.core.models import ActionKind, ElementDescriptor, Step, StepStatus
from remedy.layers.sense.probe_driver import ProbeDriver


class FakeProbeDriver(ProbeDriver):
    """
    In-memory page for probing.

    ``elements`` maps a selector to its state: ``visible``, ``enabled``,
    ``clickable`` (hover probe) and ``count``. Selectors that are not keys
    do not exist on the page.
    """

    def __init__(
        self,
        elements: Optional[Dict[str, Dict]] = None,
        snapshot: Optional[List[ElementDescriptor]] = None,
        url: str = "about:blank",
        broken=(),
        fail_navigation: bool = False,
    ):
        self.elements = elements or {}
        self.snapshot = list(snapshot or [])
        self._url = url
        self.broken = set(broken)
        self.fail_navigation = fail_navigation
        self.navigations: List[str] = []
        self.hovered: List[str] = []

    @property
    def current_url(self) -> str:
        return self._url

    def navigate(self, url: str) -> None:
        if self.fail_navigation:
            raise DriverError(f"net::ERR_CONNECTION_REFUSED at {url}")
        self.navigations.append(url)
        self._url = url

    def _check(self, selector: str) -> None:
        if selector in self.broken:
            raise DriverError(f"Protocol error while probing {selector}", selector)

    def locator_count(self, selector: str) -> int:
        self._check(selector)
        element = self.elements.get(selector)
        if element is None:
            return 0
        return element.get("count", 1)

    def is_visible(self, selector: str) -> bool:
        return self.elements[selector].get("visible", True)

    def is_enabled(self, selector: str) -> bool:
        return self.elements[selector].get("enabled", True)

    def hover_probe(self, selector: str, timeout_ms: int) -> bool:
        self.hovered.append(selector)
        return self.elements[selector].get("clickable", True)

    def dom_snapshot(self) -> List[ElementDescriptor]:
        return list(self.snapshot)


@pytest.fixture
def make_driver():
    return FakeProbeDriver


@pytest.fixture
def fixed_clock():
    return lambda: datetime(2024, 1, 5, 12, 0, 0)


@pytest.fixture
def contact_route_steps():
    """load, fill, failing submit click, unreached assertion."""
    return [
        Step("Open contact page", ActionKind.LOAD, "https://example.com/contact", status=StepStatus.PASSED),
        Step("Enter name", ActionKind.FILL, "#name", "John", status=StepStatus.PASSED),
        Step(
            "Submit form",
            ActionKind.CLICK,
            ".submit",
            status=StepStatus.FAILED,
            error="Timeout 30000ms exceeded.\nwaiting for element to be visible",
        ),
        Step("Thanks is shown", ActionKind.ASSERT_VISIBLE, "text=Thanks"),
    ]
