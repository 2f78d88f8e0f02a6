"""HTTP surface over one WorkbenchEngine."""

from workbench_api.main import create_app

__all__ = ["create_app"]
