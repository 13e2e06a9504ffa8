from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("zerver")
except PackageNotFoundError:
    __version__ = "0"
