"""Capability registry and dispatch."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, ClassVar

from pydantic import BaseModel

from src.lookup.store import EntityStore
from src.pipeline_config import PipelineConfig
from src.resolution.models import ThreadContext
from src.routing.models import (
    CapabilityCall,
    CapabilityDescriptor,
    CapabilityResult,
    DispatchResult,
    ResolvedEntities,
)

logger = logging.getLogger(__name__)


@dataclass
class CapabilityContext:
    """Per-request collaborators handed to capability handlers."""

    store: EntityStore
    thread_context: ThreadContext | None = None
    config: PipelineConfig = PipelineConfig()


class Capability(ABC):
    """A structured operation the router can select.

    Subclasses set ``name``, ``description`` and ``args_model`` and
    implement :meth:`handle`.
    """

    name: ClassVar[str]
    description: ClassVar[str]
    args_model: ClassVar[type[BaseModel]]

    def validate(self, raw_args: Mapping[str, Any]) -> BaseModel:
        """Validate raw tool arguments; raises ``pydantic.ValidationError``."""
        return self.args_model.model_validate(dict(raw_args))

    @abstractmethod
    def handle(self, ctx: CapabilityContext, args: Any) -> CapabilityResult: ...

    def descriptor(self) -> CapabilityDescriptor:
        return CapabilityDescriptor(
            name=self.name,
            description=self.description,
            argument_schema=self.args_model.model_json_schema(),
        )


def seed_args_from_thread_context(
    args: Mapping[str, Any], thread_context: ThreadContext | None
) -> dict[str, Any]:
    """Fill in ``meeting_id`` / ``company_id`` the router left out."""
    seeded = dict(args)
    if thread_context is None:
        return seeded
    if not seeded.get("meeting_id") and thread_context.meeting_id:
        seeded["meeting_id"] = thread_context.meeting_id
    if not seeded.get("company_id") and thread_context.company_id:
        seeded["company_id"] = thread_context.company_id
    return seeded


class CapabilityRegistry:
    """Immutable name -> capability mapping."""

    def __init__(self, capabilities: Iterable[Capability]) -> None:
        by_name: dict[str, Capability] = {}
        for capability in capabilities:
            if capability.name in by_name:
                raise ValueError(f"Duplicate capability name: {capability.name}")
            by_name[capability.name] = capability
        self._capabilities = MappingProxyType(by_name)

    def __contains__(self, name: object) -> bool:
        return name in self._capabilities

    def __len__(self) -> int:
        return len(self._capabilities)

    def get(self, name: str) -> Capability:
        try:
            return self._capabilities[name]
        except KeyError:
            raise KeyError(f"Unknown capability: {name}") from None

    def descriptors(self) -> list[CapabilityDescriptor]:
        return [c.descriptor() for c in self._capabilities.values()]

    def tools(self) -> list[dict[str, Any]]:
        """Anthropic tool definitions for every registered capability."""
        return [
            {"name": d.name, "description": d.description, "input_schema": d.argument_schema}
            for d in self.descriptors()
        ]

    def dispatch(self, call: CapabilityCall, ctx: CapabilityContext) -> DispatchResult:
        """Run a routed capability call.

        Missing ids are seeded from the thread context before validation.
        Entities the handler reports override those taken from the arguments.

        Raises:
            KeyError: If the capability isn't registered.
            pydantic.ValidationError: If the arguments don't validate.
        """
        capability = self.get(call.capability_name)
        seeded = seed_args_from_thread_context(call.arguments, ctx.thread_context)
        args = capability.validate(seeded)

        logger.info("Dispatching %s with %s", capability.name, seeded)
        result = capability.handle(ctx, args)

        from_args = ResolvedEntities(
            company_id=_optional_str(seeded.get("company_id")),
            meeting_id=_optional_str(seeded.get("meeting_id")),
        )
        return DispatchResult(
            capability_name=capability.name,
            answer=result.answer,
            resolved_entities=from_args.merged_with(result.resolved_entities),
            offer=result.offer if result.offer in self else None,
        )


def _optional_str(value: Any) -> str | None:
    return str(value) if value else None
