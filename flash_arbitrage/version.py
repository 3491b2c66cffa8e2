"""Version information for the flash arbitrage engine."""

__version__ = "0.1.0"
__version_info__ = tuple(int(i) for i in __version__.split("."))


def get_version_info() -> dict:
    """Get detailed version information."""
    major, minor, patch = __version_info__
    return {"version": __version__, "major": major, "minor": minor, "patch": patch}
