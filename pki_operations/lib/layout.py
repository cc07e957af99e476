"""Per-instance directory layout resolution and creation."""

from pathlib import Path

from .config import PKIConfig
from .errors import ConfigurationError, ExecutionError
from .logging_config import LOGGER
from .models import InstanceLayout


def check_path_component(value: str, what: str) -> str:
    """Return value unchanged if it is usable as a single directory name.

    Raises:
        ValueError: If value is empty, contains a separator or is a dot entry
    """
    if not value or value in (".", "..") or "/" in value or "\0" in value:
        raise ValueError(f"invalid {what}: {value!r}")
    return value


def resolve_layout(config: PKIConfig, instance: str) -> InstanceLayout:
    """Resolve all paths for an instance and check its inputs exist.

    Nothing is created here, so a configuration error leaves no trace.

    Args:
        config: Installation configuration
        instance: Instance name (single path component)

    Returns:
        InstanceLayout with toolkit, parameter, working and publish paths

    Raises:
        ConfigurationError: If the toolkit root, parameter file or publish root is missing
    """
    check_path_component(instance, "instance name")

    toolkit_dir = config.toolkit_dir
    vars_file = config.vars_dir / instance

    if not toolkit_dir.is_dir():
        raise ConfigurationError(f"toolkit directory not found: {toolkit_dir}")
    if not vars_file.is_file():
        raise ConfigurationError(f"parameter file not found: {vars_file}")
    if not config.publish_root.is_dir():
        raise ConfigurationError(f"publish root not found: {config.publish_root}")

    return InstanceLayout(
        instance=instance,
        toolkit_dir=toolkit_dir,
        vars_file=vars_file,
        work_dir=config.keys_dir / instance,
        publish_dir=config.publish_root / instance,
    )


def ensure_directory(path: Path) -> Path:
    """Create path and its parents if absent.

    Raises:
        ExecutionError: On any filesystem error other than the directory existing
    """
    if path.is_dir():
        return path

    LOGGER.info("Creating directory %s", path)
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ExecutionError(f"cannot create directory {path}: {e}") from e
    return path


def ensure_layout(layout: InstanceLayout) -> InstanceLayout:
    """Create the working directory and the publish tree, parents first."""
    ensure_directory(layout.work_dir)
    ensure_directory(layout.publish_dir)
    for subtree in layout.publish_subtrees:
        ensure_directory(subtree)
    return layout
