__version__ = "0.1.0"


def __getattr__(name: str):
    """Lazy re-exports from voxcmd.api for convenience."""
    _api_names = {
        "CommandEngine",
        "build_engine",
        "handle_text",
    }
    if name in _api_names:
        from voxcmd import api

        return getattr(api, name)
    raise AttributeError(f"module 'voxcmd' has no attribute {name!r}")
