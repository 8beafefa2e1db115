from __future__ import annotations

from collections import Counter
from typing import Any


class NullMetrics:
    """Metrics sink that records nothing; used when debug probes are off.

    Example:
        ```python
        metrics = NullMetrics()
        metrics.count_dom_op("appendChild")
        ```
    """

    enabled = False

    def count_dom_op(self, name: str) -> None:
        pass

    def count_listener(self, target: str, event_type: str) -> None:
        pass

    def count_mutations(self, count: int) -> None:
        pass

    def count_timer(self, kind: str) -> None:
        pass

    def count_navigation(self, method: str, href: str) -> None:
        pass

    def sample_root(self, at_ms: int, present: bool, html_length: int) -> None:
        pass


class Metrics(NullMetrics):
    """Per-call debug counters passed explicitly to each shim installer.

    The counters never influence control flow; they are only emitted as one
    `[swoop probes]` debug console entry at the end of a call.

    Example:
        ```python
        metrics = Metrics()
        metrics.count_dom_op("appendChild")
        summary = metrics.summary()
        ```
    """

    enabled = True

    def __init__(self) -> None:
        self.dom_ops: Counter[str] = Counter()
        self.listeners: Counter[str] = Counter()
        self.mutations = 0
        self.timers: Counter[str] = Counter()
        self.nav: dict[str, Any] = {"pushState": 0, "replaceState": 0, "lastHref": None}
        self.samples: list[dict[str, Any]] = []

    def count_dom_op(self, name: str) -> None:
        self.dom_ops[name] += 1

    def count_listener(self, target: str, event_type: str) -> None:
        self.listeners[f"{target}:{event_type}"] += 1

    def count_mutations(self, count: int) -> None:
        self.mutations += max(0, int(count))

    def count_timer(self, kind: str) -> None:
        self.timers[kind] += 1

    def count_navigation(self, method: str, href: str) -> None:
        if method in ("pushState", "replaceState"):
            self.nav[method] += 1
        self.nav["lastHref"] = href

    def sample_root(self, at_ms: int, present: bool, html_length: int) -> None:
        self.samples.append({"at": int(at_ms), "present": bool(present), "htmlLength": int(html_length)})

    def summary(self, top_dom_ops: int = 15, top_listeners: int = 20) -> dict[str, Any]:
        """Return the JSON-ready probe summary.

        Example:
            ```python
            payload = json.dumps(metrics.summary())
            ```
        """
        return {
            "domOps": dict(self.dom_ops.most_common(top_dom_ops)),
            "mutations": self.mutations,
            "listeners": dict(self.listeners.most_common(top_listeners)),
            "timers": dict(self.timers),
            "nav": dict(self.nav),
            "rootSamples": list(self.samples),
        }
