"""Known embedding model definitions.

Model selection is a closed identifier space: a request may only name a model
that appears here (or in ``SEMEMBED_EXTRA_MODELS``). Anything else is an
``UnknownModelError`` before any download is attempted.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional


@dataclass(frozen=True)
class ModelSpec:
    """Static description of a loadable model."""

    name: str
    dimension: int
    max_seq_length: int = 512


BUILTIN_MODELS: List[ModelSpec] = [
    ModelSpec("BAAI/bge-small-en-v1.5", dimension=384, max_seq_length=512),
    ModelSpec("BAAI/bge-base-en-v1.5", dimension=768, max_seq_length=512),
    ModelSpec("sentence-transformers/all-MiniLM-L6-v2", dimension=384, max_seq_length=256),
]


class ModelCatalog:
    """Lookup table of ``ModelSpec`` keyed by identifier."""

    def __init__(self, specs: Iterable[ModelSpec] = ()):
        self._specs: Dict[str, ModelSpec] = {}
        for spec in specs:
            self.add(spec)

    @classmethod
    def default(cls, extra: Iterable[Dict[str, object]] = ()) -> "ModelCatalog":
        """Built-in models plus ``{"name", "dimension"}`` entries from config."""
        catalog = cls(BUILTIN_MODELS)
        for entry in extra:
            catalog.add(ModelSpec(name=str(entry["name"]), dimension=int(entry["dimension"])))
        return catalog

    def add(self, spec: ModelSpec) -> None:
        if not spec.name:
            raise ValueError("model name must not be empty")
        self._specs[spec.name] = spec

    def get(self, model_id: str) -> Optional[ModelSpec]:
        return self._specs.get(model_id)

    def names(self) -> List[str]:
        return sorted(self._specs)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._specs

    def __iter__(self) -> Iterator[ModelSpec]:
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)
