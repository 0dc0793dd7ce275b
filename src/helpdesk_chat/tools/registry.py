"""
Tool registry and dispatcher for helpdesk chat turns.

The registry is built once at startup and never mutated; the dispatcher resolves
a tool name against it, injects tenant context for tenant-scoped tools and turns
every outcome (including failures) into a finished ToolCall.
"""

from __future__ import annotations

import json
import time

from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from helpdesk_chat.api.middleware.exception_handlers import AppException, InvalidRequestError, ToolError
from helpdesk_chat.models.api_models import FunctionResponse
from helpdesk_chat.models.chat_models import TenantContext, ToolCall
from helpdesk_chat.models.error_models import ErrorCode
from helpdesk_chat.utils import metrics
from helpdesk_chat.utils.logger import logger


@dataclass(frozen=True)
class ToolContext:
    """What a handler knows about the turn that invoked it."""

    tenant: TenantContext | None = None
    chat_id: str | None = None


ToolHandler = Callable[[dict[str, Any], ToolContext], Awaitable[Any]]


@dataclass(frozen=True)
class ToolSpec:
    """A named function the model may call.

    ``parameters`` maps property name to its JSON schema. ``required`` lists the
    required properties; None means every property is required.
    """

    name: str
    description: str
    handler: ToolHandler
    parameters: Mapping[str, dict[str, Any]] = field(default_factory=dict)
    required: tuple[str, ...] | None = None
    tenant_scoped: bool = False

    @property
    def required_params(self) -> list[str]:
        if self.required is None:
            return list(self.parameters)
        return list(self.required)

    @property
    def strict(self) -> bool:
        """Strict schemas require every property to be listed as required."""
        return len(self.required_params) == len(self.parameters)

    def params_json_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {name: dict(schema) for name, schema in self.parameters.items()},
            "required": self.required_params,
            "additionalProperties": False,
        }

    def to_function_schema(self) -> dict[str, Any]:
        """Provider function-tool definition."""
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.params_json_schema(),
            "strict": self.strict,
        }


class ToolRegistry:
    """Immutable name -> ToolSpec mapping with per-employee tool sets."""

    def __init__(
        self,
        shared: Iterable[ToolSpec] = (),
        employee_tools: Mapping[str, Iterable[ToolSpec]] | None = None,
    ):
        specs: dict[str, ToolSpec] = {}
        shared_names: list[str] = []
        by_employee: dict[str, tuple[str, ...]] = {}

        for spec in shared:
            self._add(specs, spec)
            shared_names.append(spec.name)

        for employee_id, tools in (employee_tools or {}).items():
            names = []
            for spec in tools:
                self._add(specs, spec)
                names.append(spec.name)
            by_employee[employee_id] = tuple(names)

        self._specs: Mapping[str, ToolSpec] = MappingProxyType(specs)
        self._shared: tuple[str, ...] = tuple(shared_names)
        self._by_employee: Mapping[str, tuple[str, ...]] = MappingProxyType(by_employee)

    @staticmethod
    def _add(specs: dict[str, ToolSpec], spec: ToolSpec) -> None:
        existing = specs.get(spec.name)
        if existing is not None and existing is not spec:
            raise ValueError(f"Duplicate tool name: {spec.name}")
        specs[spec.name] = spec

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __len__(self) -> int:
        return len(self._specs)

    @property
    def names(self) -> list[str]:
        return list(self._specs)

    def get(self, name: str) -> ToolSpec | None:
        return self._specs.get(name)

    def for_employee(self, employee_id: str | None) -> list[ToolSpec]:
        """Shared tools followed by the employee's own tools (unknown employee: shared only)."""
        names = self._shared + self._by_employee.get(employee_id or "", ())
        return [self._specs[name] for name in names]


def parse_arguments(arguments: str | Mapping[str, Any] | None) -> dict[str, Any]:
    """Decode model-supplied arguments into a dict.

    Raises:
        InvalidRequestError: Arguments are not a JSON object.
    """
    if arguments is None or arguments == "":
        return {}
    if isinstance(arguments, Mapping):
        return dict(arguments)
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as e:
        raise InvalidRequestError(f"Tool arguments are not valid JSON: {e.msg}") from e
    if not isinstance(parsed, dict):
        raise InvalidRequestError("Tool arguments must be a JSON object")
    return parsed


class ToolDispatcher:
    """Executes named tools from a ToolRegistry."""

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    def resolve(self, name: str) -> ToolSpec:
        spec = self.registry.get(name)
        if spec is None:
            raise ToolError(name, f"Unknown tool: {name}", code=ErrorCode.UNKNOWN_TOOL)
        return spec

    async def execute(
        self,
        name: str,
        arguments: str | Mapping[str, Any] | None,
        tenant: TenantContext | None = None,
        *,
        chat_id: str | None = None,
    ) -> FunctionResponse:
        """Run one tool and return its response envelope.

        Raises:
            ToolError: Unknown tool name (``UNKNOWN_TOOL``).
            InvalidRequestError: Malformed arguments, or a tenant-scoped tool without tenant context.
            Exception: Whatever the handler raises.
        """
        spec = self.resolve(name)
        args = parse_arguments(arguments)

        if spec.tenant_scoped and tenant is None:
            raise InvalidRequestError(
                f"Tool '{name}' requires tenant context (userId and companyId)",
                details={"tool": name},
            )

        result = await spec.handler(args, ToolContext(tenant=tenant, chat_id=chat_id))
        if isinstance(result, FunctionResponse):
            return result
        return FunctionResponse(success=True, data=result)

    async def dispatch(
        self,
        name: str,
        arguments: str | Mapping[str, Any] | None,
        tenant: TenantContext | None = None,
        *,
        call_id: str | None = None,
        chat_id: str | None = None,
    ) -> ToolCall:
        """Run one tool and record the outcome as a finished ToolCall.

        Never raises for tool-level failures: unknown tools, bad arguments and
        handler exceptions all produce a ``failed`` ToolCall whose output
        describes the error, so the model can acknowledge it.
        """
        raw_arguments = arguments if isinstance(arguments, str) or arguments is None else json.dumps(arguments)
        call = ToolCall(name=name, arguments=raw_arguments)
        if call_id:
            call.id = call_id

        start_time = time.perf_counter()
        try:
            call.parsed_arguments = parse_arguments(arguments)
            response = await self.execute(name, call.parsed_arguments, tenant, chat_id=chat_id)
            call.finish(response.to_json(), failed=not response.success)
        except AppException as e:
            logger.warning(f"Tool {name} rejected: {e.message}", tool=name, error_code=e.code.value)
            call.finish(FunctionResponse(success=False, error=e.message, code=e.code.value).to_json(), failed=True)
        except Exception as e:
            logger.error(f"Tool {name} failed: {e}", exc_info=True, tool=name)
            error = str(e) or type(e).__name__
            call.finish(
                FunctionResponse(success=False, error=error, code=ErrorCode.TOOL_FAILED.value).to_json(),
                failed=True,
            )
        finally:
            duration = time.perf_counter() - start_time
            metrics.tool_call_duration_seconds.labels(tool_name=name).observe(duration)

        metrics.tool_calls_total.labels(tool_name=name, status=call.status).inc()
        logger.log_tool_call(name, call.parsed_arguments or {}, call.output or "", call.status)
        return call


__all__ = [
    "ToolContext",
    "ToolDispatcher",
    "ToolHandler",
    "ToolRegistry",
    "ToolSpec",
    "parse_arguments",
]
