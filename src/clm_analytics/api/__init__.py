"""Read-only HTTP API over pool analytics."""

from clm_analytics.api.app import create_api_app

__all__ = ["create_api_app"]
