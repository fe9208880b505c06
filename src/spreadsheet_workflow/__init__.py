"""Spreadsheet Workflow - chained spreadsheet steps filled by a language model."""

from spreadsheet_workflow.api import app, create_app

__all__ = ["app", "create_app"]
__version__ = "0.1.0"


def main() -> None:
    """Run the FastAPI server using uvicorn."""
    import uvicorn

    from spreadsheet_workflow.config import settings

    uvicorn.run(
        "spreadsheet_workflow.api:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.debug,
    )
