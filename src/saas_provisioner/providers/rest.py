"""Generic handler for resources exposed as a REST collection."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, ClassVar

from saas_provisioner.engine.handlers import R, ResourceHandler
from saas_provisioner.engine.types import Phase
from saas_provisioner.errors import ConflictError, NotFoundError, ProviderError
from saas_provisioner.resources.markers import collect_immutable_fields, natural_key_field

if TYPE_CHECKING:
    from pydantic import BaseModel

    from saas_provisioner.engine.handlers import Context
    from saas_provisioner.providers.http import ApiClient
    from saas_provisioner.resources.base import ResourceOutput

logger = logging.getLogger(__name__)


class RestResourceHandler(ResourceHandler[R]):
    """Create with POST, update with ``update_method``, delete with DELETE.

    Subclasses set ``collection_path`` (``str.format`` placeholders are filled
    from the props) and override the hooks below when a provider deviates
    from the plain collection/item shape.

    - Create conflicts (409) adopt the existing object when ``props.adopt``
      is set, looking it up by the field marked ``NaturalKey``.
    - Fields marked ``Immutable`` are left out of update payloads.
    - A 404 on delete means the object is already gone.
    """

    collection_path: ClassVar[str]
    id_field: ClassVar[str] = "id"
    update_method: ClassVar[str] = "PATCH"

    def __init__(self, client: ApiClient) -> None:
        self.client = client

    # ── URL and payload hooks ───────────────────────────────────────

    def collection_url(self, props: BaseModel) -> str:
        return self.collection_path.format_map(props.model_dump(exclude=set(_lifecycle(props))))

    def item_url(self, props: BaseModel, identifier: Any) -> str:
        return f"{self.collection_url(props)}/{identifier}"

    def payload(self, props: BaseModel, phase: Phase) -> dict[str, Any]:
        exclude = set(_lifecycle(props))
        if phase is Phase.UPDATE:
            exclude |= collect_immutable_fields(props)
        return props.model_dump(exclude=exclude, exclude_none=True, by_alias=True)

    def provider_fields(self, ctx: Context[R], data: Any) -> dict[str, Any]:
        """Keep the response fields the output adds on top of the declared props."""
        if not isinstance(data, dict):
            return {}
        declared = set(type(ctx.props).model_fields)
        output_only = set(ctx.output_model.model_fields) - declared
        return {k: v for k, v in data.items() if k in output_only}

    # ── lifecycle ───────────────────────────────────────────────────

    async def apply(self, ctx: Context[R], props: R) -> ResourceOutput:
        if ctx.phase is Phase.UPDATE and ctx.output is not None:
            data = await self.update(ctx, props)
        else:
            data = await self.create(ctx, props)
        return ctx.build_output(**self.provider_fields(ctx, data))

    async def create(self, ctx: Context[R], props: R) -> Any:
        try:
            return await self.client.post(
                self.collection_url(props), json=self.payload(props, Phase.CREATE)
            )
        except ConflictError:
            if not props.adopt:
                raise
            logger.info("%s '%s' already exists; adopting it", ctx.kind, ctx.logical_id)
            return await self.find_existing(ctx, props)

    async def find_existing(self, ctx: Context[R], props: R) -> Any:
        """Fetch the remote object that owns *props*' natural key."""
        key = natural_key_field(props)
        if key is None:
            raise ProviderError(f"{ctx.kind} has no NaturalKey field; cannot adopt '{ctx.logical_id}'")
        return await self.client.get(self.item_url(props, getattr(props, key)))

    async def update(self, ctx: Context[R], props: R) -> Any:
        identifier = getattr(ctx.output, self.id_field)
        return await self.client.request(
            self.update_method,
            self.item_url(props, identifier),
            json=self.payload(props, Phase.UPDATE),
        )

    async def delete(self, ctx: Context[R]) -> None:
        output = ctx.output
        if output is None:
            return
        try:
            await self.client.delete(self.item_url(output, getattr(output, self.id_field)))
        except NotFoundError:
            logger.debug("%s '%s' not found on delete", ctx.kind, ctx.logical_id)


def _lifecycle(props: BaseModel) -> frozenset[str]:
    return getattr(type(props), "lifecycle_fields", frozenset())
