"""Static model catalog and per-request model resolution."""

import logging
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger("socratic.models")


class NoModelAvailableError(Exception):
    """Raised when no catalog entry has a configured provider credential."""


@dataclass(frozen=True)
class CatalogEntry:
    id: str
    name: str
    provider: str
    provider_model: str


@dataclass(frozen=True)
class ModelBinding:
    model_id: str
    provider: str
    provider_model: str


MODEL_CATALOG: tuple[CatalogEntry, ...] = (
    CatalogEntry(
        id="claude-sonnet-4-5",
        name="Claude Sonnet 4.5",
        provider="anthropic",
        provider_model="claude-sonnet-4-5-20250929",
    ),
    CatalogEntry(
        id="claude-haiku-4-5",
        name="Claude Haiku 4.5",
        provider="anthropic",
        provider_model="claude-haiku-4-5-20251001",
    ),
    CatalogEntry(id="gpt-4o", name="GPT-4o", provider="openai", provider_model="gpt-4o"),
    CatalogEntry(
        id="gpt-4o-mini", name="GPT-4o mini", provider="openai", provider_model="gpt-4o-mini"
    ),
    CatalogEntry(id="stub", name="Offline stub", provider="stub", provider_model="stub-socratic"),
)


class ModelSelector:
    """Resolves a requested model id against the catalog entries usable right now.

    ``credentials`` is called on every resolution; availability is never cached.
    """

    def __init__(
        self,
        credentials: Callable[[], set[str]],
        catalog: tuple[CatalogEntry, ...] = MODEL_CATALOG,
    ) -> None:
        self._credentials = credentials
        self._catalog = catalog

    def available_models(self) -> list[CatalogEntry]:
        present = self._credentials()
        return [entry for entry in self._catalog if entry.provider in present]

    def is_known_model_id(self, model_id: str) -> bool:
        if not model_id:
            return True
        return any(entry.id == model_id for entry in self._catalog)

    def select(self, requested: str | None) -> ModelBinding:
        available = self.available_models()
        if not available:
            raise NoModelAvailableError("No model available: no provider credentials configured")

        if requested:
            for entry in available:
                if entry.id == requested:
                    return self._binding(entry)
            reason = "unavailable" if self.is_known_model_id(requested) else "unknown"
            logger.warning(
                "invalid_model_id", extra={"model_id": requested[:64], "reason": reason}
            )

        return self._binding(available[0])

    @staticmethod
    def _binding(entry: CatalogEntry) -> ModelBinding:
        return ModelBinding(
            model_id=entry.id,
            provider=entry.provider,
            provider_model=entry.provider_model,
        )
