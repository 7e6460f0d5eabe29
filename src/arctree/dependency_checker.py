import sys
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version
from typing import Optional


@dataclass
class DependencyVersions:
    """Versions of the dependencies used by arctree."""

    python_version: Optional[str] = None
    zstandard_version: Optional[str] = None
    backports_strenum_version: Optional[str] = None
    tqdm_version: Optional[str] = None


def get_dependency_versions() -> DependencyVersions:
    """Get versions of all dependencies; None for packages that are not installed."""
    versions = DependencyVersions()

    versions.python_version = (
        f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    )

    for package, attr in [
        ("zstandard", "zstandard_version"),
        ("backports.strenum", "backports_strenum_version"),
        ("tqdm", "tqdm_version"),
    ]:
        try:
            setattr(versions, attr, version(package))
        except PackageNotFoundError:
            pass

    return versions


def format_dependency_versions(versions: DependencyVersions) -> str:
    lines = ["Dependency Versions:"]
    for field in versions.__dataclass_fields__:
        value = getattr(versions, field)
        lines.append(f"  {field}: {value if value is not None else 'not installed'}")
    return "\n".join(lines)


if __name__ == "__main__":
    print(format_dependency_versions(get_dependency_versions()))
