"""Static catalogue of the tools exposed to the reasoning engine."""
from __future__ import annotations

from typing import Any, Dict, Iterable, List

from pydantic import BaseModel, ValidationError

from release_agent.core.errors import ToolNotFound, ToolValidationError
from release_agent.core.models import ToolSpec


class ToolRegistry:
    """Name -> :class:`ToolSpec` lookup, built once and read-only after."""

    def __init__(self, specs: Iterable[ToolSpec]) -> None:
        self._specs: Dict[str, ToolSpec] = {}
        for spec in specs:
            if spec.name.value in self._specs:
                raise ValueError(f"Tool '{spec.name.value}' registered twice")
            self._specs[spec.name.value] = spec

    def resolve(self, name: str) -> ToolSpec:
        spec = self._specs.get(name)
        if spec is None:
            raise ToolNotFound(name)
        return spec

    @staticmethod
    def validate(spec: ToolSpec, arguments: Any) -> BaseModel:
        """Check arguments against the tool's input model."""
        if isinstance(arguments, str):
            raise ToolValidationError(spec.name.value, ["arguments are not valid JSON"])
        try:
            return spec.input_model.model_validate(arguments if arguments is not None else {})
        except ValidationError as exc:
            raise ToolValidationError(spec.name.value, exc.errors(include_url=False)) from exc

    def schemas(self) -> List[Dict[str, Any]]:
        return [spec.schema() for spec in self._specs.values()]

    def names(self) -> List[str]:
        return list(self._specs)

    def __len__(self) -> int:
        return len(self._specs)

    def __contains__(self, name: object) -> bool:
        return name in self._specs
