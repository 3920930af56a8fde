"""Version information of the management server."""

MAJOR_VERSION = 0
MINOR_VERSION = 0
PATCH_VERSION = 1
VERSION_SUFFIX = "dev"


def version() -> str:
    """Return the server version string, e.g. ``v0.0.1-dev``."""
    return f"v{MAJOR_VERSION}.{MINOR_VERSION}.{PATCH_VERSION}-{VERSION_SUFFIX}"