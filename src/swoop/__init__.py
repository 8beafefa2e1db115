from .errors import (
    HostFetchError,
    SwoopEnvironmentError,
    SwoopError,
    SwoopExecutionError,
    SwoopSecurityError,
    SwoopTimeoutError,
)
from .options import RenderOptions, RenderResult, Timing
from .render import render, render_async, render_html, render_html_async
from .execution.quickjs_engine import QuickJSEngine
from .fetching import HostResponse, HttpxHostFetch

__all__ = [
    "RenderOptions",
    "RenderResult",
    "Timing",
    "render",
    "render_async",
    "render_html",
    "render_html_async",
    "QuickJSEngine",
    "HostResponse",
    "HttpxHostFetch",
    "SwoopError",
    "SwoopEnvironmentError",
    "SwoopExecutionError",
    "SwoopSecurityError",
    "SwoopTimeoutError",
    "HostFetchError",
]
