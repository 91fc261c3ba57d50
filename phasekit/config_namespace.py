"""Strict configuration namespace helper for `phasekit` components."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Iterable

_MISSING = object()


def _join_path(parent: str, key: str) -> str:
    if not parent:
        return key
    return f"{parent}.{key}"


def _normalize_key(key: Any) -> str:
    if not isinstance(key, str) or not key.strip():
        raise TypeError("ConfigNamespace key must be a non-empty string")
    return key.strip()


@dataclass
class ConfigNamespace:
    """Typed view over a mapping that remembers which keys were read.

    Components pull their options through the `get_*` helpers and the owner
    calls `assert_consumed()` afterwards, so a misspelled key fails loudly
    instead of silently falling back to a default.
    """

    data: Mapping[str, Any]
    path: str
    _consumed: set[str] = field(default_factory=set, init=False, repr=False)
    _children: dict[str, "ConfigNamespace"] = field(default_factory=dict, init=False, repr=False)
    _effective: dict[str, Any] = field(default_factory=dict, init=False, repr=False)

    def consumed_keys(self) -> tuple[str, ...]:
        return tuple(sorted(self._consumed))

    def unconsumed_keys(self) -> tuple[str, ...]:
        return tuple(sorted(str(k) for k in self.data.keys() if k not in self._consumed))

    def assert_consumed(self) -> None:
        unknown = list(self.unconsumed_keys())
        if unknown:
            path = self.path or "<root>"
            consumed = ", ".join(self.consumed_keys()) or "<none>"
            raise ValueError(
                f"Unknown config keys under {path}: {', '.join(unknown)} (consumed: {consumed})"
            )
        for child in self._children.values():
            child.assert_consumed()

    def effective_values(self) -> dict[str, Any]:
        out = dict(self._effective)
        for key, child in self._children.items():
            child_effective = child.effective_values()
            if child_effective:
                out[key] = child_effective
        return out

    def has(self, key: str) -> bool:
        return _normalize_key(key) in self.data

    def _label(self, key: str) -> str:
        return _join_path(self.path, key)

    def _get_raw(self, key: str, *, default: Any) -> tuple[str, Any, bool]:
        """Return `(normalized_key, value, from_default)`."""

        normalized = _normalize_key(key)
        if normalized in self._children:
            raise ValueError(f"{self._label(normalized)} already accessed as a nested namespace")

        self._consumed.add(normalized)
        if normalized not in self.data:
            if default is _MISSING:
                raise ValueError(f"Missing required config key: {self._label(normalized)}")
            return normalized, default, True
        return normalized, self.data.get(normalized), False

    def namespace(
        self,
        key: str,
        *,
        default: Mapping[str, Any] | None | object = _MISSING,
    ) -> "ConfigNamespace":
        normalized = _normalize_key(key)
        if normalized in self._children:
            return self._children[normalized]

        raw = self.data.get(normalized)
        self._consumed.add(normalized)
        if raw is None:
            if default is _MISSING:
                raise ValueError(f"Missing required config namespace: {self._label(normalized)}")
            if default is not None and not isinstance(default, Mapping):
                raise TypeError(f"default for {self._label(normalized)} must be a mapping or None")
            raw = dict(default or {})

        if not isinstance(raw, Mapping):
            raise TypeError(
                f"{self._label(normalized)} must be a mapping (type={type(raw).__name__})"
            )

        child = ConfigNamespace(dict(raw), path=self._label(normalized))
        self._children[normalized] = child
        return child

    def get_bool(self, key: str, *, default: bool | object = _MISSING) -> bool:
        normalized, value, _ = self._get_raw(key, default=default)
        if not isinstance(value, bool):
            raise TypeError(
                f"{self._label(normalized)} must be a boolean (type={type(value).__name__})"
            )
        self._effective[normalized] = value
        return value

    def get_int(
        self,
        key: str,
        *,
        default: int | object = _MISSING,
        min_value: int | None = None,
        max_value: int | None = None,
    ) -> int:
        normalized, value, _ = self._get_raw(key, default=default)
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(
                f"{self._label(normalized)} must be an int (type={type(value).__name__})"
            )
        self._check_range(normalized, value, min_value=min_value, max_value=max_value)
        self._effective[normalized] = value
        return value

    def get_optional_int(
        self,
        key: str,
        *,
        default: int | None = None,
        min_value: int | None = None,
        max_value: int | None = None,
    ) -> int | None:
        """Parse an int that may be absent or explicitly null."""

        normalized, value, _ = self._get_raw(key, default=default)
        if value is None:
            self._effective[normalized] = None
            return None
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(
                f"{self._label(normalized)} must be an int or null (type={type(value).__name__})"
            )
        self._check_range(normalized, value, min_value=min_value, max_value=max_value)
        self._effective[normalized] = value
        return value

    def _check_range(
        self, key: str, value: int, *, min_value: int | None, max_value: int | None
    ) -> None:
        if min_value is not None and value < min_value:
            raise ValueError(f"{self._label(key)} must be >= {min_value} (got {value})")
        if max_value is not None and value > max_value:
            raise ValueError(f"{self._label(key)} must be <= {max_value} (got {value})")

    def get_str(
        self,
        key: str,
        *,
        default: str | None | object = _MISSING,
        allow_empty: bool = False,
        strip: bool = True,
        choices: Iterable[str] | None = None,
    ) -> str | None:
        normalized, raw, _ = self._get_raw(key, default=default)
        if raw is None:
            self._effective[normalized] = None
            return None
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            # YAML turns `version: 1.0` into a float; keep the written form.
            raw = str(raw)
        if not isinstance(raw, str):
            raise TypeError(
                f"{self._label(normalized)} must be a string (type={type(raw).__name__})"
            )
        value = raw.strip() if strip else raw
        if not value.strip() and not allow_empty:
            raise ValueError(f"{self._label(normalized)} cannot be empty")
        if choices is not None:
            choice_set = {str(item).strip() for item in choices if str(item).strip()}
            if value not in choice_set:
                allowed = ", ".join(sorted(choice_set)) or "<none>"
                raise ValueError(
                    f"{self._label(normalized)} must be one of: {allowed} (got {value!r})"
                )
        self._effective[normalized] = value
        return value

    def get_list_str(
        self,
        key: str,
        *,
        default: list[str] | tuple[str, ...] | object = _MISSING,
        allow_empty: bool = True,
    ) -> list[str]:
        normalized, raw, _ = self._get_raw(key, default=default)
        if raw is None:
            raw = []
        if not isinstance(raw, (list, tuple)):
            raise TypeError(
                f"{self._label(normalized)} must be a list[str] (type={type(raw).__name__})"
            )

        items: list[str] = []
        for idx, item in enumerate(raw):
            if not isinstance(item, str):
                raise TypeError(
                    f"{self._label(normalized)}[{idx}] must be a string (type={type(item).__name__})"
                )
            trimmed = item.strip()
            if not trimmed:
                raise ValueError(f"{self._label(normalized)}[{idx}] cannot be empty")
            items.append(trimmed)

        if not items and not allow_empty:
            raise ValueError(f"{self._label(normalized)} cannot be empty")

        self._effective[normalized] = list(items)
        return items

    def get_list_mapping(
        self,
        key: str,
        *,
        default: list[Mapping[str, Any]] | tuple[Mapping[str, Any], ...] | object = _MISSING,
    ) -> list[dict[str, Any]]:
        normalized, raw, _ = self._get_raw(key, default=default)
        if raw is None:
            raw = []
        if not isinstance(raw, (list, tuple)):
            raise TypeError(
                f"{self._label(normalized)} must be a list[dict] (type={type(raw).__name__})"
            )

        items: list[dict[str, Any]] = []
        for idx, item in enumerate(raw):
            if not isinstance(item, Mapping):
                raise TypeError(
                    f"{self._label(normalized)}[{idx}] must be a mapping (type={type(item).__name__})"
                )
            items.append(dict(item))

        self._effective[normalized] = list(items)
        return items

    def get_mapping(
        self,
        key: str,
        *,
        default: Mapping[str, Any] | None | object = _MISSING,
    ) -> dict[str, Any]:
        """Read a free-form mapping whose keys are not validated here."""

        normalized, raw, _ = self._get_raw(key, default=default)
        if raw is None:
            raw = {}
        if not isinstance(raw, Mapping):
            raise TypeError(
                f"{self._label(normalized)} must be a mapping (type={type(raw).__name__})"
            )
        value = dict(raw)
        self._effective[normalized] = value
        return value

    def get_any(self, key: str, *, default: Any = _MISSING) -> Any:
        normalized, value, _ = self._get_raw(key, default=default)
        self._effective[normalized] = value
        return value
