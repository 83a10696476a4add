"""Name -> constructor registry for format adapters.

The active adapter is chosen by `PD_ADAPTER` at process start. New bank
formats are added here without touching the builder or the importer.
"""

from collections.abc import Callable

from debitrecon.services.direct_debit.adapters.base import DirectDebitAdapter
from debitrecon.services.direct_debit.adapters.debug_csv import DebugCsvAdapter
from debitrecon.services.direct_debit.adapters.galicia_pd_v1 import GaliciaPdV1Adapter


class UnknownAdapterError(ValueError):
    """Configuration names an adapter that is not registered."""


AdapterFactory = Callable[[], DirectDebitAdapter]

_FACTORIES: dict[str, AdapterFactory] = {
    DebugCsvAdapter.name: DebugCsvAdapter,
    GaliciaPdV1Adapter.name: GaliciaPdV1Adapter,
}


def register_adapter(name: str) -> Callable[[AdapterFactory], AdapterFactory]:
    """Class decorator adding a factory under `name`."""

    key = name.strip().lower()

    def decorator(factory: AdapterFactory) -> AdapterFactory:
        if key in _FACTORIES:
            raise ValueError(f"adapter already registered: {key}")
        _FACTORIES[key] = factory
        return factory

    return decorator


def available_adapters() -> list[str]:
    return sorted(_FACTORIES)


def resolve_adapter(name: str) -> DirectDebitAdapter:
    """Build the adapter registered under `name` (case-insensitive)."""

    factory = _FACTORIES.get((name or "").strip().lower())
    if factory is None:
        raise UnknownAdapterError(
            f"unknown direct-debit adapter {name!r}; available: {', '.join(available_adapters())}"
        )
    return factory()
