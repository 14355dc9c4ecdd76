"""Shared helpers for resolving CLI and environment inputs."""

from __future__ import annotations

import os
from collections import abc as cabc
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True, slots=True)
class InputResolution:
    """Configuration for resolving an input from multiple sources.

    ``aliases`` are consulted, in order, when ``env_key`` is unset.
    """

    env_key: str
    default: str | Path | None = None
    required: bool = False
    as_path: bool = False
    aliases: tuple[str, ...] = ()


def resolve_input(
    param_value: str | Path | None,
    resolution: InputResolution,
    env: cabc.Mapping[str, str] | None = None,
) -> str | Path | None:
    """Resolve input from parameter, environment variable, or default.

    Examples
    --------
    >>> resolve_input(None, InputResolution("GCS_BUCKET_NAME", aliases=("BUCKET_NAME",)), env={"BUCKET_NAME": "keys"})
    'keys'
    """

    if param_value is not None:
        return param_value

    source = os.environ if env is None else env
    for key in (resolution.env_key, *resolution.aliases):
        env_value = source.get(key)
        if env_value:
            return Path(env_value) if resolution.as_path else env_value

    if resolution.required:
        msg = f"{resolution.env_key} must be set and non empty"
        raise SystemExit(msg)

    return resolution.default


def resolve_number(
    param_value: float | None,
    resolution: InputResolution,
    kind: type[int] | type[float],
    env: cabc.Mapping[str, str] | None = None,
) -> float:
    """Resolve a numeric input, exiting with a clear message when malformed.

    Examples
    --------
    >>> resolve_number(None, InputResolution("CHECK_INTERVAL", default="10"), float, env={})
    10.0
    """

    if param_value is not None:
        return param_value
    raw = resolve_input(None, resolution, env=env)
    try:
        return kind(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        msg = f"{resolution.env_key} must be {kind.__name__}, got: {raw!r}"
        raise SystemExit(msg) from exc


def parse_bool(value: str | bool | None) -> bool:
    """Interpret common truthy strings.

    Examples
    --------
    >>> parse_bool("Yes"), parse_bool("0"), parse_bool(None)
    (True, False, False)
    """

    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}
