"""Render plan construction.

Folds an ordered prefix of the edit log into one flat, ordered effect chain.
Batches are flattened in version order and operations keep their position
inside each batch. Repeated effects are kept, since their order is part of
the visual result.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol


class OperationBatch(Protocol):
    version: int
    ops: list[dict[str, Any]]


@dataclass(frozen=True)
class EffectStep:
    """A single effect application."""

    effect: str
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"effect": self.effect, "parameters": dict(self.parameters)}


@dataclass(frozen=True)
class RenderPlan:
    """Ordered effect chain materialized for one log version."""

    version: int
    effects: tuple[EffectStep, ...] = ()
    batch_count: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.effects

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "batch_count": self.batch_count,
            "effects": [step.to_dict() for step in self.effects],
        }


def effect_steps(ops: Iterable[dict[str, Any]]) -> list[EffectStep]:
    """Extract effect steps from one batch; non-effect descriptors are skipped."""
    steps = []
    for op in ops:
        if op.get("type") != "effect" or not op.get("effect"):
            continue
        parameters = op.get("parameters") or op.get("params") or {}
        steps.append(EffectStep(effect=str(op["effect"]), parameters=dict(parameters)))
    return steps


def build_render_plan(operations: Iterable[OperationBatch]) -> RenderPlan:
    """Reduce an ordered log prefix into a render plan."""
    effects: list[EffectStep] = []
    version = 0
    batch_count = 0
    for batch in operations:
        effects.extend(effect_steps(batch.ops or []))
        version = max(version, batch.version)
        batch_count += 1
    return RenderPlan(version=version, effects=tuple(effects), batch_count=batch_count)
