from __future__ import annotations

import json
import logging
from typing import Any

from ..console import ConsoleCapture
from ..execution.config import PROBE_SAMPLE_DELAYS_MS, PROBE_TOP_DOM_OPS, PROBE_TOP_LISTENERS, js_source
from ..sandbox.metrics import Metrics

logger = logging.getLogger(__name__)

PROBE_MARKER = "[swoop probes]"


def install_probes(
    sandbox: Any,
    metrics: Metrics,
    *,
    root_selector: str = "app-root",
    sample_delays_ms: tuple[int, ...] = PROBE_SAMPLE_DELAYS_MS,
) -> None:
    """Wrap DOM mutation methods and `addEventListener` so every call is counted.

    Must run after every other shim, since it wraps whatever is installed at that
    point. Counters land in `metrics`; root-element samples are taken immediately
    and then through sandbox timers at each of `sample_delays_ms`.

    Example:
        ```python
        metrics = Metrics()
        install_probes(sandbox, metrics, root_selector="app-root")
        ```
    """
    sandbox.expose("probe_dom_op", metrics.count_dom_op)
    sandbox.expose("probe_listener", metrics.count_listener)
    sandbox.expose("probe_mutations", metrics.count_mutations)
    sandbox.expose("probe_sample", metrics.sample_root)
    sandbox.evaluate(js_source("probes"))
    sandbox.call("__swoop_probes.init", root_selector, list(sample_delays_ms))
    logger.debug("Debug probes installed (root=%s)", root_selector)


def emit_probe_summary(capture: ConsoleCapture, metrics: Metrics) -> None:
    """Record the probe counters as one debug console entry.

    Example:
        ```python
        emit_probe_summary(capture, metrics)
        assert capture.entries[-1].args[0] == "[swoop probes]"
        ```
    """
    payload = json.dumps(metrics.summary(PROBE_TOP_DOM_OPS, PROBE_TOP_LISTENERS), sort_keys=True)
    capture.record("debug", [PROBE_MARKER, payload])
