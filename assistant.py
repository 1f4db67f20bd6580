# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "voxcmd",
# ]
#
# [tool.uv.sources]
# voxcmd = { path = "." }
# ///
"""Standalone voice command assistant over typed utterances."""

from voxcmd.apps.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
