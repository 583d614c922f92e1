"""Declarative field mapping between service data shapes."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Iterable, Mapping

from .errors import TransformFailedError, UnknownTransformerError
from .models import DataMapping

logger = logging.getLogger(__name__)

Transformer = Callable[[Any], Any]


def _require_str(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError(f"expected a string, got {type(value).__name__}")
    return value


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = _require_str(value).strip().lower()
    if text in ("true", "yes", "1", "on"):
        return True
    if text in ("false", "no", "0", "off", ""):
        return False
    raise ValueError(f"cannot interpret {value!r} as a boolean")


BUILTIN_TRANSFORMERS: Dict[str, Transformer] = {
    "uppercase": lambda value: _require_str(value).upper(),
    "lowercase": lambda value: _require_str(value).lower(),
    "trim": lambda value: _require_str(value).strip(),
    "to_string": str,
    "to_int": int,
    "to_float": float,
    "to_bool": _to_bool,
}


class TransformerRegistry:
    """Named value transformers available to data mappings."""

    def __init__(self, transformers: Mapping[str, Transformer] | None = None) -> None:
        self._transformers: Dict[str, Transformer] = dict(transformers or {})
        self._lock = threading.Lock()

    def register(self, name: str, transformer: Transformer) -> None:
        with self._lock:
            self._transformers[name] = transformer
        logger.info(f"Registered data transformer {name}")

    def get(self, name: str) -> Transformer:
        with self._lock:
            transformer = self._transformers.get(name)
        if transformer is None:
            raise UnknownTransformerError(name)
        return transformer

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._transformers)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._transformers


class DataMapper:
    """Projects source data into a target input using data mappings."""

    def __init__(self, transformers: TransformerRegistry) -> None:
        self._transformers = transformers

    def apply_mappings(
        self,
        source_service: str,
        source_data: Mapping[str, Any],
        target_service: str,
        mappings: Iterable[DataMapping],
    ) -> dict[str, Any]:
        """Return a new dict holding only the mapped target fields.

        Mappings are applied in order and only when both services match.
        Source fields that are absent are skipped. When two mappings write
        the same target field, the later one wins.
        """
        result: dict[str, Any] = {}
        for mapping in mappings:
            if (
                mapping.source_service != source_service
                or mapping.target_service != target_service
            ):
                continue
            if mapping.source_field not in source_data:
                logger.debug(
                    f"Skipping mapping {source_service}.{mapping.source_field}: field not present"
                )
                continue

            value = source_data[mapping.source_field]
            if mapping.transformer:
                transformer = self._transformers.get(mapping.transformer)
                try:
                    value = transformer(value)
                except Exception as exc:
                    raise TransformFailedError(
                        f"transformer {mapping.transformer!r} failed on field "
                        f"{mapping.source_field!r}: {exc}"
                    ) from exc
            result[mapping.target_field] = value
        return result
