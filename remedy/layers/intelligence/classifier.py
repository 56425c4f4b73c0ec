"""
Failure Classifier - Maps a failed step to an ErrorKind.

All free-text parsing of driver error messages lives in
``read_error_signals``. The rule table below only ever looks at the parsed
ErrorSignals and the live probe, so adding a new driver's error dialect
means touching the adapter and nothing else.
"""

from dataclasses import dataclass
import re
from typing import Optional

from remedy.core.models import ActionKind, ErrorKind, Resolution, Step

# Ordered so that the more specific pattern is reported first
INTERFERENCE_PATTERNS = (
    "datepicker",
    "modal",
    "dialog",
    "popup",
    "dropdown",
    "tooltip",
    "overlay",
)

_NOT_FOUND = re.compile(
    r"not found|no such element|no element|unable to locate|resolved to 0 elements|failed to find"
)
_NOT_VISIBLE = re.compile(r"not visible|is hidden|element is not displayed|to be visible")
_NOT_ENABLED = re.compile(r"not enabled|is disabled|element is disabled")
_POINTER = re.compile(
    r"intercepts pointer events|click intercepted|is not clickable|would receive the click"
)
_TIMEOUT = re.compile(r"timeout|timed out|exceeded")


class InputMismatch:
    """Action/element mismatch flavours reported by drivers."""
    CHECKBOX = "checkbox"
    RADIO = "radio"
    SELECT = "select"
    NUMBER = "number"
    FILE = "file"
    DATE = "date"


@dataclass(frozen=True)
class ErrorSignals:
    """Structured facts extracted from a raw driver error message."""
    not_found: bool = False
    not_visible: bool = False
    not_enabled: bool = False
    pointer_intercepted: bool = False
    mismatch: Optional[str] = None
    interference: Optional[str] = None
    timeout: bool = False


def read_error_signals(text: Optional[str]) -> ErrorSignals:
    """
    Parse a driver error message into ErrorSignals.

    Example:
        >>> read_error_signals('Input of type "checkbox" cannot be filled').mismatch
        'checkbox'
    """
    raw = text or ""
    lowered = raw.lower()
    return ErrorSignals(
        not_found=bool(_NOT_FOUND.search(lowered)),
        not_visible=bool(_NOT_VISIBLE.search(lowered)),
        not_enabled=bool(_NOT_ENABLED.search(lowered)),
        pointer_intercepted=bool(_POINTER.search(lowered)),
        mismatch=_read_mismatch(lowered),
        interference=next((p for p in INTERFERENCE_PATTERNS if p in lowered), None),
        timeout=bool(_TIMEOUT.search(lowered)),
    )


def _read_mismatch(lowered: str) -> Optional[str]:
    if 'type "checkbox"' in lowered and "cannot be filled" in lowered:
        return InputMismatch.CHECKBOX
    if 'type "radio"' in lowered and "cannot be filled" in lowered:
        return InputMismatch.RADIO
    if "not an <input>" in lowered or "not a <select>" in lowered or "element is a <select>" in lowered:
        return InputMismatch.SELECT
    if "cannot type text into input[type=number]" in lowered:
        return InputMismatch.NUMBER
    if 'type "file"' in lowered or "setinputfiles" in lowered:
        return InputMismatch.FILE
    if "malformed value" in lowered:
        return InputMismatch.DATE
    return None


class FailureClassifier:
    """
    Ordered rule table; the first matching rule wins.

    Probe facts take precedence over error text. When the probe is
    unresolved (the driver failed), rules 1-3 fall back to the error text.

    Example:
        >>> classifier = FailureClassifier()
        >>> classifier.classify(step, step.error, resolution)
        <ErrorKind.NOT_VISIBLE: 'not_visible'>
    """

    def classify(
        self,
        step: Step,
        error_text: Optional[str],
        resolution: Optional[Resolution] = None,
    ) -> ErrorKind:
        signals = read_error_signals(error_text)
        probe = resolution.original if resolution and resolution.resolved else None

        # 1-3: existence, visibility and enablement
        if probe is not None and step.action.targets_element:
            if not probe.exists:
                return ErrorKind.ELEMENT_NOT_FOUND
            if not probe.visible:
                return ErrorKind.NOT_VISIBLE
            if not probe.enabled and step.action.is_interactive:
                return ErrorKind.NOT_ENABLED
        else:
            if signals.not_found:
                return ErrorKind.ELEMENT_NOT_FOUND
            if signals.not_visible:
                return ErrorKind.NOT_VISIBLE
            if signals.not_enabled and step.action.is_interactive:
                return ErrorKind.NOT_ENABLED

        # 4: click that does not receive the pointer
        if step.action == ActionKind.CLICK:
            if probe is not None and probe.clickable is False:
                return ErrorKind.NOT_CLICKABLE
            if signals.pointer_intercepted:
                return ErrorKind.NOT_CLICKABLE

        # 5: action does not suit the element
        if self.mismatch_for(step, signals, resolution) is not None:
            return ErrorKind.WRONG_ELEMENT_TYPE

        # 6: something is sitting on top of the page
        if signals.interference is not None:
            return ErrorKind.UI_INTERFERENCE

        # 7: plain timeout
        if signals.timeout:
            return ErrorKind.DYNAMIC_LOADING_TIMEOUT

        return ErrorKind.UNKNOWN

    def mismatch_for(
        self,
        step: Step,
        signals: ErrorSignals,
        resolution: Optional[Resolution] = None,
    ) -> Optional[str]:
        """
        The action/element mismatch, from error text or the live element.

        A fill aimed at a ``<select>``, checkbox or radio is a mismatch even
        when the driver's message is uninformative.
        """
        if signals.mismatch is not None:
            return signals.mismatch
        descriptor = resolution.descriptor if resolution else None
        if descriptor is None or step.action != ActionKind.FILL:
            return None
        if descriptor.tag_name == "select":
            return InputMismatch.SELECT
        if descriptor.input_type in (InputMismatch.CHECKBOX, InputMismatch.RADIO, InputMismatch.FILE):
            return descriptor.input_type
        return None
