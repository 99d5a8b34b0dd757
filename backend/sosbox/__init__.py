"""SOS BOX tracker backend."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("sosbox")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
