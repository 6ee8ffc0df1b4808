"""HTTP surface for the HMR pipeline.

Keep this module import-light: the CLI and the tests import submodules under
``hmr.*`` without needing FastAPI's app object and its lifespan resources.
"""

from __future__ import annotations


def __getattr__(name: str):
    if name == "app":
        from .fastapi_app import app

        return app
    raise AttributeError(name)
