from dataclasses import dataclass, field
from collections.abc import Mapping
from typing import Any, Dict, List, Set

from .models import FieldObservation, NestedStructureObservation
from .utils import STRUCTURED_TYPES, canonical_json, classify_value


@dataclass
class _FieldState:
    path: str
    type: str
    is_array: bool
    is_nested: bool
    frequency: int = 0
    null_count: int = 0
    examples: List[Any] = field(default_factory=list)
    signatures: Set[str] = field(default_factory=set)


class FieldAccumulator:
    """Per-path field statistics gathered over one sampling pass.

    Each document is walked recursively. Nested objects are descended into
    with dotted paths ("address.city"); arrays are recorded but not entered.
    The type of a path is the type seen on its first observation. A literal
    dotted key ("a.b") shares its path with the nested field a -> b, so a
    document holding both counts that path twice.

    Args:
        max_examples: Number of raw non-null values kept per path.
        track_unique: Also count distinct values by their serialized form.
    """

    def __init__(self, max_examples: int = 3, track_unique: bool = False):
        self.max_examples = max_examples
        self.track_unique = track_unique
        self.fields: Dict[str, _FieldState] = {}
        self.data_types: Dict[str, int] = {}
        self.nested: Dict[str, NestedStructureObservation] = {}

    def add_document(self, data: Mapping) -> None:
        self._walk(data, "")

    def _walk(self, obj: Mapping, prefix: str) -> None:
        for key, value in obj.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            value_type = classify_value(value)
            self.data_types[value_type] = self.data_types.get(value_type, 0) + 1

            state = self.fields.get(path)
            if state is None:
                state = _FieldState(
                    path=path,
                    type=value_type,
                    is_array=value_type == "array",
                    is_nested=value_type == "object",
                )
                self.fields[path] = state

            state.frequency += 1
            if value is None:
                state.null_count += 1
            else:
                if len(state.examples) < self.max_examples:
                    state.examples.append(value)
                if self.track_unique:
                    state.signatures.add(canonical_json(value))

            if value_type in STRUCTURED_TYPES:
                structure = self.nested.get(path)
                if structure is None:
                    structure = NestedStructureObservation(path=path, kind=value_type)
                    self.nested[path] = structure
                structure.frequency += 1
                if value_type == "object":
                    self._walk(value, path)

    def field_observations(self) -> List[FieldObservation]:
        """Observations sorted by descending frequency; ties keep first-seen order."""
        observations = [
            FieldObservation(
                path=state.path,
                type=state.type,
                frequency=state.frequency,
                null_count=state.null_count,
                examples=list(state.examples),
                is_array=state.is_array,
                is_nested=state.is_nested,
                unique_values=len(state.signatures) if self.track_unique else None,
            )
            for state in self.fields.values()
        ]
        return sorted(observations, key=lambda obs: obs.frequency, reverse=True)

    def nested_structures(self) -> List[NestedStructureObservation]:
        return sorted(self.nested.values(), key=lambda obs: obs.frequency, reverse=True)
