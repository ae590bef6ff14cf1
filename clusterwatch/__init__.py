"""clusterwatch package bootstrap."""

from pathlib import Path

__all__ = [
    "__version__",
]

try:
    _version_file = Path(__file__).parent.parent / "VERSION"
    if _version_file.exists():
        __version__ = _version_file.read_text().strip()
    else:
        # Installed package without the VERSION file
        __version__ = "0.3.0"
except OSError:
    __version__ = "0.3.0"
