"""Resource lifecycle engine."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import Counter
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from saas_provisioner.core.scope import SEPARATOR, Scope
from saas_provisioner.core.secret import model_holds_secrets, redact
from saas_provisioner.engine.graph import DependencyGraph
from saas_provisioner.engine.handlers import Context
from saas_provisioner.engine.types import Phase, TeardownFailure, TeardownResult
from saas_provisioner.errors import (
    DependencyCycleError,
    NotFoundError,
    OutputNotBuiltError,
    ScopeClosedError,
    SecretEncryptionError,
)
from saas_provisioner.resources.markers import ResourceRef

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from saas_provisioner.core.state import ResourceInstance, StateStore
    from saas_provisioner.engine.registry import ResourceKindRegistration, ResourceKindRegistry
    from saas_provisioner.resources.base import Resource

logger = logging.getLogger(__name__)


def _dedupe(items: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(items))


class ResourceEngine:
    """Apply declared resources into scopes and tear scopes down.

    ``apply`` decides create vs update from the recorded output, runs the
    kind's handler and commits the result. ``reconcile`` deletes what a run
    no longer declares; ``destroy`` deletes everything a scope recorded.
    """

    def __init__(
        self,
        *,
        store: StateStore,
        registry: ResourceKindRegistry,
        max_concurrency: int | None = None,
    ) -> None:
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError(f"max_concurrency must be a positive integer, got {max_concurrency}")
        self._store = store
        self._registry = registry
        self._max_concurrency = max_concurrency
        self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None
        # scope name -> number of applies running in it
        self._active: Counter[str] = Counter()
        self._idle = asyncio.Condition()

    @property
    def store(self) -> StateStore:
        return self._store

    @property
    def registry(self) -> ResourceKindRegistry:
        return self._registry

    @property
    def max_concurrency(self) -> int | None:
        return self._max_concurrency

    # ── helpers ─────────────────────────────────────────────────────

    def _bounded(self) -> contextlib.AbstractAsyncContextManager[Any]:
        return self._semaphore if self._semaphore is not None else contextlib.nullcontext()

    async def _leave(self, scope: Scope) -> None:
        async with self._idle:
            self._active[scope.name] -= 1
            if self._active[scope.name] <= 0:
                del self._active[scope.name]
            self._idle.notify_all()

    async def _wait_idle(self, scope: Scope) -> None:
        def idle() -> bool:
            return not any(scope.contains(name) for name in self._active)

        async with self._idle:
            await self._idle.wait_for(idle)

    @staticmethod
    def _closed(scope: Scope) -> bool:
        node: Scope | None = scope
        while node is not None:
            if node.destroying:
                return True
            node = node.parent
        return False

    @staticmethod
    def _close(scope: Scope) -> None:
        scope.destroying = True
        for child in scope.children:
            ResourceEngine._close(child)

    @staticmethod
    def _coerce_props(reg: ResourceKindRegistration, props: Any) -> Resource:
        if isinstance(props, reg.model):
            return props
        if isinstance(props, Mapping):
            return reg.model.model_validate(dict(props))
        raise TypeError(
            f"Props for {reg.kind} must be {reg.model.__name__} or a mapping, "
            f"got {type(props).__name__}"
        )

    @staticmethod
    def _collect_dependencies(scope: Scope, logical_id: str, props: Resource) -> list[str]:
        deps = list(props.depends_on)
        for ref in props.references():
            if ref.scope == scope.name:
                deps.append(ref.logical_id)
        return [d for d in _dedupe(deps) if d != logical_id]

    # ── apply ───────────────────────────────────────────────────────

    async def apply(self, scope: Scope, kind: str, logical_id: str, props: Any) -> Any:
        """Create or update *logical_id* in *scope* and return its bound output.

        On failure the recorded output is left as it was and the exception
        propagates unchanged.
        """
        if self._closed(scope):
            raise ScopeClosedError(scope.name)

        prior_exists = False
        try:
            reg = self._registry.get(kind)
            model = self._coerce_props(reg, props)
            if not self._store.can_persist_secrets and model_holds_secrets(reg.output):
                raise SecretEncryptionError(
                    f"{kind} outputs hold secrets and the state store has no passphrase; "
                    f"refusing to apply '{logical_id}' in scope {scope.name}"
                )
            scope.begin(kind, logical_id)
        except Exception:
            scope.mark_failed(logical_id)
            raise

        self._active[scope.name] += 1
        ref = ResourceRef(scope=scope.name, kind=kind, logical_id=logical_id)
        try:
            prior_inst = self._store.get(scope.name, kind, logical_id)
            prior_exists = prior_inst is not None
            prior = (
                reg.output.model_validate(prior_inst.output).bind(ref)
                if prior_inst is not None
                else None
            )
            phase = Phase.UPDATE if prior is not None else Phase.CREATE

            ctx: Context[Any] = Context(
                phase=phase,
                scope=scope,
                kind=kind,
                logical_id=logical_id,
                props=model,
                output=prior,
                output_model=reg.output,
            )
            logger.debug("Applying %s: %s '%s' in scope %s", phase.value, kind, logical_id, scope.name)
            async with self._bounded():
                result = await reg.handler.apply(ctx, model)

            if result is None or result is not ctx.built:
                raise OutputNotBuiltError(kind, logical_id)

            deps = self._collect_dependencies(scope, logical_id, model)
            self._store.put(scope.name, kind, logical_id, result.model_dump(), dependencies=deps)
            scope.declare(kind, logical_id)
            scope.clear_failed(logical_id)
            logger.info(
                "%s %s '%s' in scope %s",
                "Created" if phase is Phase.CREATE else "Updated",
                kind,
                logical_id,
                scope.name,
            )
            return result.bind(ref)
        except Exception:
            scope.mark_failed(logical_id)
            if prior_exists:
                scope.declare(kind, logical_id)
            logger.debug("Apply of %s '%s' in scope %s failed", kind, logical_id, scope.name)
            raise
        finally:
            scope.end(logical_id)
            await self._leave(scope)

    # ── teardown ────────────────────────────────────────────────────

    def _teardown_order(
        self, scope_name: str, instances: Sequence[ResourceInstance]
    ) -> list[ResourceInstance]:
        by_id = {inst.logical_id: inst for inst in instances}
        graph = DependencyGraph(
            by_id,
            {inst.logical_id: inst.dependencies for inst in instances},
            priorities={inst.logical_id: inst.sequence for inst in instances},
        )
        try:
            order = graph.teardown_order()
        except DependencyCycleError as e:
            logger.warning(
                "%s in scope %s; deleting in reverse creation order", e, scope_name
            )
            return sorted(instances, key=lambda inst: inst.sequence, reverse=True)
        return [by_id[logical_id] for logical_id in order]

    async def _delete(
        self,
        scope: Scope,
        inst: ResourceInstance,
        result: TeardownResult,
        label: str,
    ) -> None:
        ref = ResourceRef(scope=scope.name, kind=inst.kind, logical_id=inst.logical_id)
        try:
            reg = self._registry.get(inst.kind)
            prior = reg.output.model_validate(inst.output).bind(ref)
            ctx: Context[Any] = Context(
                phase=Phase.DELETE,
                scope=scope,
                kind=inst.kind,
                logical_id=inst.logical_id,
                props=prior,
                output=prior,
                output_model=reg.output,
            )
            logger.debug("Deleting %s '%s': %s", inst.kind, label, redact(inst.output))
            async with self._bounded():
                await reg.handler.delete(ctx)
        except NotFoundError:
            logger.info("%s '%s' was already gone", inst.kind, label)
            result.deleted.append(label)
        except Exception as e:
            logger.error("Failed to delete %s '%s' in scope %s: %s", inst.kind, label, scope.name, e)
            result.failures.append(
                TeardownFailure(
                    scope=scope.name,
                    kind=inst.kind,
                    logical_id=inst.logical_id,
                    error=str(e) or type(e).__name__,
                )
            )
        else:
            logger.info("Deleted %s '%s'", inst.kind, label)
            result.deleted.append(label)
        finally:
            self._store.remove(scope.name, inst.kind, inst.logical_id)

    async def _teardown(
        self,
        scope: Scope,
        instances: Sequence[ResourceInstance],
        *,
        root: Scope,
    ) -> TeardownResult:
        result = TeardownResult(scope=scope.name)
        for inst in self._teardown_order(scope.name, instances):
            label = (
                inst.logical_id
                if scope is root
                else f"{scope.name}{SEPARATOR}{inst.logical_id}"
            )
            await self._delete(scope, inst, result, label)
        return result

    async def reconcile(self, scope: Scope) -> TeardownResult:
        """Delete resources recorded for *scope* but not declared in this run.

        Skipped entirely when an apply in the scope failed, because a run that
        stopped early cannot tell a removed declaration from one it never reached.
        """
        if self._closed(scope):
            raise ScopeClosedError(scope.name)
        await self._wait_idle(scope)

        orphans = [
            inst
            for inst in self._store.list_declared(scope.name)
            if not scope.is_declared(inst.logical_id)
        ]
        if not orphans:
            return TeardownResult(scope=scope.name)

        if not scope.clean:
            logger.warning(
                "Scope %s had failed applies (%s); not deleting %d undeclared resource(s)",
                scope.name,
                ", ".join(sorted(scope.failed)),
                len(orphans),
            )
            return TeardownResult(
                scope=scope.name, skipped=[inst.logical_id for inst in orphans]
            )

        logger.info("Deleting %d undeclared resource(s) in scope %s", len(orphans), scope.name)
        return await self._teardown(scope, orphans, root=scope)

    def _descendants(self, scope: Scope) -> list[Scope]:
        """Recorded partitions nested under *scope*, deepest then newest first."""
        known: dict[str, Scope] = {}
        stack = list(scope.children)
        while stack:
            child = stack.pop()
            known[child.name] = child
            stack.extend(child.children)

        partitions: list[tuple[int, float, Scope]] = []
        for name in self._store.list_scopes():
            if name == scope.name or not scope.contains(name):
                continue
            instances = self._store.list_declared(name)
            created = min((inst.created_at.timestamp() for inst in instances), default=0.0)
            child = known.get(name) or Scope(name)
            partitions.append((name.count(SEPARATOR), created, child))
        partitions.sort(key=lambda p: (p[0], p[1]), reverse=True)
        return [child for _, _, child in partitions]

    async def destroy(self, scope: Scope) -> TeardownResult:
        """Delete every resource recorded for *scope* and its nested scopes.

        Never raises for a failed delete: failures are logged and collected in
        the returned result, and the state entry is removed regardless.
        """
        self._close(scope)
        await self._wait_idle(scope)

        result = TeardownResult(scope=scope.name)
        for child in self._descendants(scope):
            instances = self._store.list_declared(child.name)
            result.merge(await self._teardown(child, instances, root=scope))

        instances = self._store.list_declared(scope.name)
        result.merge(await self._teardown(scope, instances, root=scope))

        if result.ok:
            logger.info("Destroyed scope %s (%d resource(s))", scope.name, len(result.deleted))
        else:
            logger.warning(
                "Destroyed scope %s with %d failure(s); remote objects may remain",
                scope.name,
                len(result.failures),
            )
        return result

    @contextlib.asynccontextmanager
    async def scoped(self, prefix: str) -> AsyncIterator[Scope]:
        """Yield a fresh uniquely named scope and destroy it on exit."""
        scope = Scope.create(prefix)
        try:
            yield scope
        finally:
            await self.destroy(scope)
