"""Configuration loader for deployctl.

Settings are resolved from four layers, later layers winning:

1. Built-in :data:`DEFAULTS`.
2. A YAML file (``/etc/deployctl/config.yml`` unless ``--config-file`` or
   ``DEPLOYCTL_CONFIG_FILE`` names another one).
3. ``DEPLOYCTL_*`` environment variables. A double underscore descends into a
   nested section, e.g. ``DEPLOYCTL_HTTP__TIMEOUT=60``.
4. Overrides passed by the CLI (``--lock-timeout``).

Environment values go through ``yaml.safe_load`` so ``45`` arrives as a number
and ``true`` as a boolean. The merged tree is validated once and frozen into
:class:`AppConfig`.
"""
from __future__ import annotations

import copy
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load deployctl configuration. Install with "
        "`pip install deployctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "DEPLOYCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"


class ConfigError(RuntimeError):
    """Raised when a configuration source is unreadable or invalid."""


@dataclass(frozen=True, slots=True)
class HttpConfig:
    """HTTP client tuning shared by downloads and platform calls."""

    timeout: float
    chunk_size: int

    def to_dict(self) -> dict[str, object]:
        return {"timeout": self.timeout, "chunk_size": self.chunk_size}


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Resolved configuration values for deployctl."""

    config_file: Path
    state_dir: Path
    registry_dir: Path
    cache_root: Path
    prod_root: Path
    logs_dir: Path
    runtime_dir: Path
    lock_timeout: float
    default_remote_url: str
    runtime_dir_template: str
    http: HttpConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-friendly view for ``config show``."""
        data: dict[str, object] = {}
        for name in _PATH_KEYS:
            data[name] = str(getattr(self, name))
        data["lock_timeout"] = self.lock_timeout
        data["default_remote_url"] = self.default_remote_url
        data["runtime_dir_template"] = self.runtime_dir_template
        data["http"] = self.http.to_dict()
        return data


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/deployctl/config.yml",
    "state_dir": "/var/lib/deployctl",
    "registry_dir": None,  # <state_dir>/registry
    "cache_root": None,  # <state_dir>/cache
    "prod_root": "/opt/deployctl/prod",
    "logs_dir": "/var/log/deployctl",
    "runtime_dir": "/run/deployctl",
    "lock_timeout": 30.0,
    "default_remote_url": "https://blocklang.com",
    "runtime_dir_template": "jdk-{version}",
    "http": {
        "timeout": 30.0,
        "chunk_size": 64 * 1024,
    },
}

_PATH_KEYS = (
    "config_file",
    "state_dir",
    "registry_dir",
    "cache_root",
    "prod_root",
    "logs_dir",
    "runtime_dir",
)
_SECTIONS: dict[str, frozenset[str]] = {"http": frozenset({"timeout", "chunk_size"})}
# state_dir-relative fallbacks for optional directories.
_DERIVED_DIRS = {"registry_dir": "registry", "cache_root": "cache"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Resolve every configuration layer into an :class:`AppConfig`."""
    environ = os.environ if env is None else env
    path = Path(config_file or environ.get(CONFIG_ENV_VAR) or str(DEFAULTS["config_file"]))

    tree = copy.deepcopy(DEFAULTS)
    for layer in (_read_file(path), _env_layer(environ), dict(overrides or {})):
        _merge_into(tree, layer, scope="")
    tree["config_file"] = str(path)
    return _freeze(tree)


# ----------------------------------------------------------------------
# Sources
# ----------------------------------------------------------------------
def _read_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return dict(loaded)


def _env_layer(environ: Mapping[str, str]) -> dict[str, object]:
    layer: dict[str, object] = {}
    for name, raw in environ.items():
        if not name.startswith(ENV_PREFIX) or name == CONFIG_ENV_VAR:
            continue
        keys = [part.lower() for part in name[len(ENV_PREFIX) :].split("__") if part]
        if not keys:
            continue
        node = layer
        for key in keys[:-1]:
            child = node.setdefault(key, {})
            if not isinstance(child, dict):
                raise ConfigError(f"Environment variable {name} nests under scalar '{key}'.")
            node = child
        node[keys[-1]] = _parse_env_value(raw)
    return layer


def _parse_env_value(raw: str) -> object:
    text = raw.strip()
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return text


def _merge_into(tree: dict[str, object], layer: Mapping[str, object], *, scope: str) -> None:
    """Overlay *layer* onto *tree*, rejecting keys deployctl does not know."""
    allowed = _SECTIONS[scope] if scope else frozenset(DEFAULTS)
    unknown = sorted(str(key) for key in layer if key not in allowed)
    if unknown:
        where = f"{scope} configuration keys" if scope else "configuration keys"
        raise ConfigError(f"Unknown {where}: {', '.join(unknown)}.")
    for key, value in layer.items():
        if key in _SECTIONS:
            if not isinstance(value, Mapping):
                raise ConfigError(f"Expected {key} to be a mapping. Got {type(value).__name__}.")
            _merge_into(cast("dict[str, object]", tree[key]), value, scope=key)
        else:
            tree[key] = value


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------
def _freeze(tree: Mapping[str, object]) -> AppConfig:
    paths: dict[str, Path] = {}
    for key in _PATH_KEYS:
        value = tree.get(key)
        if value in (None, "") and key in _DERIVED_DIRS:
            continue
        paths[key] = _path(value, key)
    for key, leaf in _DERIVED_DIRS.items():
        paths.setdefault(key, paths["state_dir"] / leaf)

    remote_url = str(tree.get("default_remote_url") or "").strip().rstrip("/")
    if not remote_url:
        raise ConfigError("default_remote_url must be a non-empty URL.")

    http = cast("Mapping[str, object]", tree["http"])
    chunk_size = _integer(http.get("chunk_size"), "http.chunk_size")
    if chunk_size <= 0:
        raise ConfigError("http.chunk_size must be greater than zero.")

    return AppConfig(
        **paths,
        lock_timeout=_positive(tree.get("lock_timeout"), "lock_timeout"),
        default_remote_url=remote_url,
        runtime_dir_template=_runtime_template(tree.get("runtime_dir_template")),
        http=HttpConfig(
            timeout=_positive(http.get("timeout"), "http.timeout"),
            chunk_size=chunk_size,
        ),
    )


def _path(value: object, key: str) -> Path:
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str) and value.strip():
        return Path(value).expanduser()
    raise ConfigError(f"{key} must be a filesystem path. Got {value!r}.")


def _integer(value: object, key: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer. Got {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"{key} must be an integer. Got {value!r}.") from exc
    raise ConfigError(f"{key} must be an integer. Got {type(value).__name__}.")


def _positive(value: object, key: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ConfigError(f"{key} must be a number. Got {value!r}.")
    try:
        number = float(value)
    except ValueError as exc:
        raise ConfigError(f"{key} must be a number. Got {value!r}.") from exc
    if number <= 0:
        raise ConfigError(f"{key} must be greater than zero. Got {number}.")
    return number


def _runtime_template(value: object) -> str:
    """Accept templates that render one directory name from ``{version}``."""
    if not isinstance(value, str) or not value.strip():
        raise ConfigError("runtime_dir_template must be a non-empty string.")
    try:
        rendered = value.format(version="1.0")
    except (KeyError, IndexError, ValueError) as exc:
        raise ConfigError(
            f"runtime_dir_template may only reference '{{version}}': {value!r}."
        ) from exc
    if "/" in rendered or "\\" in rendered or rendered in {".", ".."}:
        raise ConfigError("runtime_dir_template must render a single directory name.")
    return value


__all__ = [
    "AppConfig",
    "ConfigError",
    "DEFAULTS",
    "HttpConfig",
    "load_config",
]
