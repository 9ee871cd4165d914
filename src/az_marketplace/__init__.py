"""Azure VM Marketplace browser."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("az-marketplace")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
