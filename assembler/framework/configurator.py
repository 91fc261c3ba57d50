from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

import yaml

from phasekit import ConfigNamespace

from assembler.framework.errors import InvalidConfiguration
from assembler.framework.interpolation import ExpressionEvaluator


class Configurable(Protocol):
    def configure(self, cfg: ConfigNamespace) -> None: ...


def _interpolate(value: Any, evaluator: ExpressionEvaluator | None) -> Any:
    if evaluator is None:
        return value
    if isinstance(value, str):
        return evaluator.evaluate(value)
    if isinstance(value, Mapping):
        return {key: _interpolate(item, evaluator) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_interpolate(item, evaluator) for item in value]
    return value


def parse_payload(payload: Any, *, path: str) -> dict[str, Any]:
    """Normalize a component payload (mapping, YAML text or None) into a dict."""

    if payload is None:
        return {}
    if isinstance(payload, str):
        if not payload.strip():
            return {}
        try:
            payload = yaml.safe_load(payload)
        except yaml.YAMLError as exc:
            raise InvalidConfiguration(f"Invalid YAML configuration for {path}: {exc}") from exc
        if payload is None:
            return {}
    if not isinstance(payload, Mapping):
        raise InvalidConfiguration(
            f"Configuration for {path} must be a mapping (type={type(payload).__name__})"
        )
    return dict(payload)


def configure_component(
    target: Configurable,
    payload: Any,
    evaluator: ExpressionEvaluator | None = None,
    *,
    path: str,
) -> None:
    """Apply `payload` to `target.configure()` and reject keys it did not read."""

    data = _interpolate(parse_payload(payload, path=path), evaluator)
    ns = ConfigNamespace(data, path=path)
    try:
        target.configure(ns)
        ns.assert_consumed()
    except InvalidConfiguration:
        raise
    except (TypeError, ValueError) as exc:
        raise InvalidConfiguration(f"Failed to configure {path}: {exc}") from exc
