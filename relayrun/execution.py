"""
The remote execution backend: a Piston server, reached over HTTP.
"""

import logging
import typing
from collections.abc import Iterable
from typing import Any, Optional

import attr
import httpx

from .errors import ExecutionBackendError
from .languages import Runtime, Script

GENERIC_ERROR = "Execution error"

DEFAULT_SERVER = "https://emkc.org"
DEFAULT_API_PREFIX = "/api/v2/piston"

logger = logging.getLogger(__name__)


@attr.s(auto_attribs=True, frozen=True)
class StageResult:
    """The outcome of one stage (compile or run) of an execution."""

    output: str
    code: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> Optional["StageResult"]:
        if data is None:
            return None

        return cls(data.get("output") or "", data.get("code"))


@attr.s(auto_attribs=True, frozen=True)
class ExecutionResult:
    """
    A result from the execution backend. Every field is optional;
    see format_execution_result for which one matters.
    """

    compile: Optional[StageResult] = None
    run: Optional[StageResult] = None
    message: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExecutionResult":
        return cls(
            StageResult.from_dict(data.get("compile")),
            StageResult.from_dict(data.get("run")),
            data.get("message"),
        )


def format_execution_result(result: ExecutionResult) -> str:
    """Reduces an execution result to the text of a reply.

    A failed compilation wins over anything the run stage says; then
    comes the run output, then the backend's own message.

        >>> format_execution_result(ExecutionResult(
        ...     compile=StageResult("E", 1), run=StageResult("R", 0)))
        'E'
        >>> format_execution_result(ExecutionResult(run=StageResult("", 0)))
        ''
        >>> format_execution_result(ExecutionResult())
        'Execution error'
    """

    if result.compile is not None and result.compile.code:
        return result.compile.output

    if result.run is not None:
        return result.run.output

    if result.message:
        return result.message

    return GENERIC_ERROR


@attr.s(auto_attribs=True)
class PistonClient:
    """An asynchronous client for the Piston v2 HTTP API.

        >>> client = PistonClient(httpx.AsyncClient(), "https://piston.example/")
        >>> client.url("runtimes")
        'https://piston.example/api/v2/piston/runtimes'
    """

    http: httpx.AsyncClient
    server: str = DEFAULT_SERVER
    api_prefix: str = DEFAULT_API_PREFIX

    def url(self, endpoint: str) -> str:
        return "{}{}/{}".format(self.server.rstrip("/"), self.api_prefix, endpoint)

    async def _request(self, method: str, endpoint: str, **kwargs) -> httpx.Response:
        try:
            return await self.http.request(method, self.url(endpoint), **kwargs)

        except httpx.HTTPError as err:
            raise ExecutionBackendError(
                "Could not reach the execution backend at {}: {}".format(self.server, err)
            ) from err

    @staticmethod
    def _json(response: httpx.Response) -> typing.Any:
        try:
            return response.json()

        except ValueError as err:
            raise ExecutionBackendError(
                "Execution backend answered HTTP {} with a non-JSON body".format(
                    response.status_code
                )
            ) from err

    async def runtimes(self) -> list[Runtime]:
        """Lists the runtimes available on the backend."""

        response = await self._request("GET", "runtimes")

        if response.is_error:
            raise ExecutionBackendError(
                "Listing runtimes failed with HTTP {}".format(response.status_code)
            )

        return [Runtime.from_dict(item) for item in self._json(response)]

    async def execute(
        self,
        language: str,
        version: str,
        files: Iterable[Script],
        args: Iterable[str] = (),
        stdin: str = "",
        compile_timeout: int = 10000,
        run_timeout: int = 10000,
    ) -> ExecutionResult:
        """Runs some code on the backend.

        Arguments:
            language {str} -- The canonical language name.
            version {str} -- The language version.
            files {Iterable[Script]} -- The source files, main file first.

        Keyword Arguments:
            args {Iterable[str]} -- Command line arguments. (default: none)
            stdin {str} -- The standard input. (default: '')
            compile_timeout {int} -- Compile stage timeout, in ms. (default: 10000)
            run_timeout {int} -- Run stage timeout, in ms. (default: 10000)

        Raises:
            ExecutionBackendError: The backend could not be reached, or did
                                   not answer with an execution result.

        Returns:
            ExecutionResult -- The structured result.
        """

        payload = {
            "language": language,
            "version": version,
            "files": [script.to_dict() for script in files],
            "args": list(args),
            "stdin": stdin,
            "compile_timeout": compile_timeout,
            "run_timeout": run_timeout,
        }

        logger.debug("Executing %s %s with %d arg(s)", language, version, len(payload["args"]))

        response = await self._request("POST", "execute", json=payload)

        if response.is_server_error:
            raise ExecutionBackendError(
                "Execution backend failed with HTTP {}".format(response.status_code)
            )

        data = self._json(response)

        if not isinstance(data, dict):
            raise ExecutionBackendError("Execution backend answered with a non-object")

        # 4xx answers (e.g. unknown language) carry only a message
        if response.is_error and "message" not in data:
            raise ExecutionBackendError(
                "Execution backend refused the request with HTTP {}".format(
                    response.status_code
                )
            )

        return ExecutionResult.from_dict(data)
