from __future__ import annotations


class SwoopError(Exception):
    """Base class for every error raised by swoop.

    Example:
        ```python
        try:
            render("https://example.com/")
        except SwoopError as exc:
            print(exc)
        ```
    """


class SwoopEnvironmentError(SwoopError):
    """The host cannot provide a capability the renderer needs.

    Raised when no isolated-context or module-evaluation primitive is available,
    or when bootstrap or shim installation leaves the sandbox unusable.

    Example:
        ```python
        raise SwoopEnvironmentError("runtime 'dukpy' has no isolated context")
        ```
    """


class SwoopTimeoutError(SwoopError):
    """The call budget ran out before a hard step could complete.

    Example:
        ```python
        raise SwoopTimeoutError("Timed out fetching https://example.com/ after 3000ms")
        ```
    """


class SwoopExecutionError(SwoopError):
    """A piece of sandboxed code threw during evaluation.

    Example:
        ```python
        err = SwoopExecutionError("TypeError: x is undefined", stack="at <eval> (<input>:1)")
        ```
    """

    def __init__(self, message: str, *, stack: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.stack = stack

    @classmethod
    def from_js(cls, exc: BaseException) -> "SwoopExecutionError":
        """Build an error from a QuickJS exception, splitting message and stack.

        Example:
            ```python
            err = SwoopExecutionError.from_js(quickjs.JSException("Error: boom\\n    at f"))
            ```
        """
        text = str(exc).strip()
        head, _, tail = text.partition("\n")
        return cls(head or type(exc).__name__, stack=tail.strip() or None)


class SwoopSecurityError(SwoopError):
    """Refusal to run scripts from untrusted input without an explicit opt-in.

    Example:
        ```python
        raise SwoopSecurityError("script execution requires execute_scripts=True")
        ```
    """


class HostFetchError(SwoopError):
    """The host fetch collaborator failed or returned an unusable response.

    Example:
        ```python
        raise HostFetchError("HTTP 404 Not Found for https://example.com/app.js")
        ```
    """
