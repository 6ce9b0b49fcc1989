# ABOUTME: Version information for the forum archive API

__version__ = "1.0.0"


def get_version_string() -> str:
    return f"Forum Archive Viewer v{__version__}"
