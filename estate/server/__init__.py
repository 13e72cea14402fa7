"""HTTP surface: application factory with tenant routing middleware."""

from estate.server.app import create_app


def run_server(
    host: str = "0.0.0.0",
    port: int = 8080,
    reload: bool = False,
) -> None:  # pragma: no cover
    """Run the API server.

    The application is built by uvicorn through ``create_app``, so settings
    are read (and a missing DATABASE_URL reported) in the server process.

    Args:
        host: Host to bind to.
        port: Port to bind to.
        reload: Whether to enable auto-reload.
    """
    import uvicorn

    uvicorn.run(
        "estate.server.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


__all__ = ["create_app", "run_server"]
