"""Sense Layer - Probing the live page and comparing DOM snapshots."""

from remedy.layers.sense.probe_driver import ProbeDriver, SeleniumProbeDriver
from remedy.layers.sense.selector_resolver import SelectorResolver
from remedy.layers.sense.similarity import similarity

__all__ = ["ProbeDriver", "SeleniumProbeDriver", "SelectorResolver", "similarity"]
