"""Where coursectl keeps its files and how one invocation's settings are resolved.

Files live in the XDG base directories on Linux and the BSDs and under
``~/.coursectl/`` elsewhere:

==========  =====================================  ======================
Purpose     XDG location                           Fallback
==========  =====================================  ======================
config      ``$XDG_CONFIG_HOME/coursectl``         ``~/.coursectl``
cache       ``$XDG_CACHE_HOME/coursectl``          ``~/.coursectl/cache``
data        ``$XDG_DATA_HOME/coursectl``           ``~/.coursectl/data``
==========  =====================================  ======================

``config.json`` in the config directory holds a
:class:`~coursectl.models.GlobalConfig`.  :func:`build_client_config` turns
it, the environment, and command-line overrides into the single
:class:`~coursectl.models.ClientConfig` an invocation runs with.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from coursectl.exceptions import ConfigError, InvalidUsageError
from coursectl.models import ClientConfig, GlobalConfig, Instance

_APP_NAME = "coursectl"
_CONFIG_FILENAME = "config.json"

ENV_INSTANCE = "COURSECTL_INSTANCE"
ENV_URL = "COURSECTL_URL"
ENV_TOKEN = "COURSECTL_TOKEN"


# --- Directories ---


def _is_xdg_platform() -> bool:
    system = platform.system()
    return system == "Linux" or system.endswith("BSD")


def _app_dir(xdg_var: str, xdg_default: str, fallback_sub: str = "") -> Path:
    """Resolve one of the three application directories and make sure it exists."""
    if _is_xdg_platform():
        root = os.environ.get(xdg_var) or str(Path.home() / xdg_default)
        path = Path(root) / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}"
        if fallback_sub:
            path = path / fallback_sub
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_config_dir() -> Path:
    """Directory holding ``config.json`` and file-stored tokens."""
    return _app_dir("XDG_CONFIG_HOME", ".config")


def get_cache_dir() -> Path:
    """Directory for disposable data; removing it never loses anything."""
    return _app_dir("XDG_CACHE_HOME", ".cache", "cache")


def get_data_dir() -> Path:
    """Directory for persistent application data such as crash logs."""
    return _app_dir("XDG_DATA_HOME", os.path.join(".local", "share"), "data")


def get_response_cache_dir() -> Path:
    """``<cache_dir>/responses``, where the API client stores entries."""
    return get_cache_dir() / "responses"


# --- Atomic writes ---


def _atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Replace *path* with *data* so readers see either the old or the new file.

    The text goes to a sibling temp file that is fsynced and then renamed
    over *path* with :func:`os.replace`.  When *mode* is given it is applied
    to the temp file first, so the destination never exists with wider
    permissions.  The temp file is removed if anything fails.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    handle = tempfile.NamedTemporaryFile(
        mode="w",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
        encoding="utf-8",
    )
    try:
        with handle:
            if mode is not None:
                os.chmod(handle.name, mode)
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(handle.name, path)
    except BaseException:
        try:
            os.unlink(handle.name)
        except OSError:
            pass
        raise


# --- config.json ---


def _global_config_path() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Read ``config.json``; a missing file yields the defaults.

    Raises:
        ConfigError: The file is not valid JSON or does not validate.
    """
    path = _global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        return GlobalConfig.model_validate_json(path.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    payload = json.dumps(config.model_dump(mode="json"), indent=2)
    _atomic_write(_global_config_path(), payload + "\n")


# --- Instance resolution ---


def resolve_instance_name(
    global_config: GlobalConfig,
    cli_instance: Optional[str] = None,
) -> Optional[str]:
    """Pick the active instance name.

    Precedence (high to low):
        1. CLI flag (``--instance``)
        2. Environment variable ``COURSECTL_INSTANCE``
        3. ``default_instance`` in the global config
        4. The only configured instance, if there is exactly one

    Returns:
        The instance name, or ``None`` if nothing selects one.
    """
    if cli_instance:
        return cli_instance
    env_instance = os.environ.get(ENV_INSTANCE)
    if env_instance:
        return env_instance
    if global_config.default_instance:
        return global_config.default_instance
    if len(global_config.instances) == 1:
        return next(iter(global_config.instances))
    return None


def get_instance(global_config: GlobalConfig, name: Optional[str]) -> Instance:
    """Look up a configured instance by name.

    Raises:
        ConfigError: If *name* is ``None`` or not configured.
    """
    if name is None:
        if not global_config.instances:
            raise ConfigError(
                f"No instances configured. Add one to {_global_config_path()} "
                f"or set {ENV_URL} and {ENV_TOKEN}."
            )
        raise ConfigError(
            "Multiple instances configured; pick one with --instance "
            f"or {ENV_INSTANCE}: {', '.join(sorted(global_config.instances))}"
        )
    instance = global_config.instances.get(name)
    if instance is None:
        raise ConfigError(f"Instance '{name}' not found in {_global_config_path()}")
    return instance


# --- Client configuration ---


def _settings_kwargs(global_config: GlobalConfig) -> dict[str, Any]:
    settings = global_config.settings
    return {
        "requests_per_sec": settings.requests_per_second,
        "burst": settings.burst,
        "cache_enabled": settings.cache_enabled,
        "cache_ttl": settings.cache_ttl_minutes * 60.0,
        "cache_dir": get_response_cache_dir(),
        "timeout": settings.timeout_seconds,
        "max_retries": settings.max_retries,
    }


def _finish(kwargs: dict[str, Any], overrides: Optional[dict[str, Any]]) -> ClientConfig:
    if overrides:
        kwargs.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return ClientConfig(**kwargs)
    except ValidationError as exc:
        raise InvalidUsageError(f"Invalid client configuration: {exc}") from exc


def build_client_config(
    global_config: GlobalConfig,
    instance_name: Optional[str] = None,
    overrides: Optional[dict[str, Any]] = None,
) -> ClientConfig:
    """Resolve settings, instance, and credentials into one :class:`ClientConfig`.

    ``COURSECTL_URL`` plus ``COURSECTL_TOKEN`` bypass the configured
    instances entirely.  Otherwise the instance picked by
    :func:`resolve_instance_name` decides the credential:

    * ``client_id`` + ``client_secret`` -- an auto-refreshing
      :class:`~coursectl.auth.TokenSource` over the fallback token store.
    * ``token`` -- that static token.
    * neither -- the access token currently held in the token store.

    Args:
        global_config: Loaded user configuration.
        instance_name: Value of ``--instance``, if given.
        overrides: ``ClientConfig`` field values that win over settings
            (``None`` values are ignored).

    Raises:
        ConfigError: If no usable instance can be resolved.
        TokenNotFoundError: If the instance relies on a stored token that
            does not exist.
        InvalidUsageError: If the resulting values fail validation.
    """
    kwargs = _settings_kwargs(global_config)

    env_url = os.environ.get(ENV_URL)
    env_token = os.environ.get(ENV_TOKEN)
    if env_url and env_token and not instance_name:
        kwargs.update(base_url=env_url, token=env_token)
        return _finish(kwargs, overrides)

    name = resolve_instance_name(global_config, instance_name)
    instance = get_instance(global_config, name)
    kwargs["base_url"] = instance.url

    from coursectl.auth import OAuth2Refresher, TokenSource, create_token_store

    if instance.has_oauth:
        refresher = OAuth2Refresher.for_instance(
            instance.url,
            client_id=instance.client_id or "",
            client_secret=instance.client_secret or "",
            timeout=global_config.settings.timeout_seconds,
        )
        kwargs["token_source"] = TokenSource(
            create_token_store(get_config_dir()), instance.name, refresher
        )
    elif instance.has_token:
        kwargs["token"] = instance.token
    else:
        kwargs["token"] = create_token_store(get_config_dir()).load(instance.name).access_token

    return _finish(kwargs, overrides)
