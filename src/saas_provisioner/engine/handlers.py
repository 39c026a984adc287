"""Engine-facing handler interfaces."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Final, Generic, TypeVar

from saas_provisioner.engine.types import Phase
from saas_provisioner.errors import OutputAlreadyBuiltError
from saas_provisioner.resources.base import Resource, ResourceOutput

if TYPE_CHECKING:
    from saas_provisioner.core.scope import Scope

R = TypeVar("R", bound=Resource)


class _Destroyed:
    """Returned by ``ctx.destroy()`` to confirm a delete."""

    _instance: _Destroyed | None = None

    def __new__(cls) -> _Destroyed:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DESTROYED"


DESTROYED: Final = _Destroyed()


class Context(Generic[R]):
    """Per-invocation bundle handed to a handler.

    Lives for exactly one handler call. ``output`` is the prior output (``None``
    on create). On create/update the handler must call :meth:`build_output`
    exactly once and return its result.
    """

    def __init__(
        self,
        *,
        phase: Phase,
        scope: Scope,
        kind: str,
        logical_id: str,
        props: R,
        output: ResourceOutput | None,
        output_model: type[ResourceOutput],
    ) -> None:
        self.phase = phase
        self.scope = scope
        self.kind = kind
        self.logical_id = logical_id
        self.props = props
        self.output = output
        self._output_model = output_model
        self._built: ResourceOutput | None = None

    @property
    def output_model(self) -> type[ResourceOutput]:
        return self._output_model

    @property
    def built(self) -> ResourceOutput | None:
        return self._built

    def build_output(self, **fields: Any) -> Any:
        """Merge the declared props with provider-assigned *fields* into the output model."""
        if self._built is not None:
            raise OutputAlreadyBuiltError(
                f"ctx.build_output() called twice for {self.kind} '{self.logical_id}'"
            )
        data = {**self.props.model_dump(), **fields}
        self._built = self._output_model.model_validate(data)
        return self._built

    def destroy(self) -> _Destroyed:
        """Signal that the remote object is gone."""
        return DESTROYED

    def __repr__(self) -> str:
        return f"Context({self.phase.value} {self.kind} '{self.logical_id}' in {self.scope.name})"


class ResourceHandler(Generic[R]):
    """Base class for resource handlers.

    Handlers translate resources into provider API calls. Subclass and
    override :meth:`apply` and :meth:`delete`.

    ``apply`` must be idempotent under retry: with ``ctx.phase`` ``update`` it
    finds the remote object through the prior output and must not create a
    second one. ``delete`` must treat an already-missing object as success.
    """

    async def apply(self, ctx: Context[R], props: R) -> ResourceOutput:
        """Create (``ctx.phase`` create) or update the resource. Return ``ctx.build_output(...)``."""
        raise NotImplementedError

    async def delete(self, ctx: Context[R]) -> None:
        """Delete the resource described by ``ctx.output``."""
        raise NotImplementedError


HandlerFunction = Callable[[Context[Any], Any], Awaitable[Any]]


class FunctionHandler(ResourceHandler[Any]):
    """Adapt a single coroutine ``fn(ctx, props)`` that branches on ``ctx.phase``.

    On delete the function receives the prior output as *props* and must
    return ``ctx.destroy()``.
    """

    def __init__(self, fn: HandlerFunction) -> None:
        self._fn = fn

    async def apply(self, ctx: Context[Any], props: Any) -> ResourceOutput:
        return await self._fn(ctx, props)

    async def delete(self, ctx: Context[Any]) -> None:
        result = await self._fn(ctx, ctx.output)
        if result is not DESTROYED:
            raise TypeError(
                f"Handler for {ctx.kind} must return ctx.destroy() on delete, got {result!r}"
            )
