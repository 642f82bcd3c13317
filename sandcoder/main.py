"""Main FastAPI application."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sandcoder import __version__
from sandcoder.api.endpoints import router
from sandcoder.utils.logging import setup_logging

setup_logging()

# Create FastAPI application
app = FastAPI(
    title="Sandcoder",
    description=(
        "Sidecar API for a sandboxed coding assistant: multi-provider chat with an "
        "automatic tool-execution loop over a local project tree."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "Conversations", "description": "Create, list, read and delete stored conversations."},
        {
            "name": "Chat",
            "description": (
                "Send user messages and approve pending tool calls. "
                "Tools only act inside the configured project root."
            ),
        },
        {"name": "Usage", "description": "Token and cost accounting."},
        {"name": "Health", "description": "Service health monitoring and status checks."},
    ],
)

# Local sidecar; only the editor on this machine talks to it
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"http://(localhost|127\.0\.0\.1)(:\d+)?",
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(router)


def run() -> None:
    """Console entry point."""
    import uvicorn

    uvicorn.run("sandcoder.main:app", host="127.0.0.1", port=8000, log_level="info")


if __name__ == "__main__":
    run()
