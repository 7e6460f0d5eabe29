from __future__ import annotations

import contextvars
import sys
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from enum import StrEnum
elif sys.version_info >= (3, 11):
    from enum import StrEnum
else:
    from backports.strenum import StrEnum


class OverwriteMode(StrEnum):
    OVERWRITE = "overwrite"
    SKIP = "skip"
    ERROR = "error"


@dataclass
class ArctreeConfig:
    """Configuration for :func:`arctree.open_archive`."""

    tar_name_charset: str = "utf-8"
    zip_name_charset: str = "cp437"
    zip_comment_charset: Optional[str] = None

    # Raise if a Tar entry has children but its own header is not a directory.
    # When False, the header is ignored and the node becomes a directory.
    tar_strict_directories: bool = True

    overwrite_mode: OverwriteMode = OverwriteMode.ERROR

    chunk_size: int = 65536


_default_config_var: contextvars.ContextVar[ArctreeConfig] = contextvars.ContextVar(
    "arctree_default_config", default=ArctreeConfig()
)


def get_default_config() -> ArctreeConfig:
    """Return the current default configuration."""
    return _default_config_var.get()


def set_default_config(config: ArctreeConfig) -> None:
    """Set the default configuration for :func:`open_archive`."""
    _default_config_var.set(config)


def set_default_config_fields(**kwargs: Any) -> None:
    """Update some fields of the default configuration for :func:`open_archive`."""
    config = get_default_config()
    config = replace(config, **kwargs)
    set_default_config(config)


@contextmanager
def default_config(config: ArctreeConfig | None = None, **kwargs: Any):
    """Temporarily use ``config`` as the default configuration."""
    if config is None:
        config = get_default_config()

    if kwargs:
        config = replace(config, **kwargs)

    token = _default_config_var.set(config)
    try:
        yield config
    finally:
        _default_config_var.reset(token)
