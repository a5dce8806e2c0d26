"""FastAPI application factory for the rotation control surface."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from structlog import get_logger

from code_revolver import __version__
from code_revolver.api.routes.rotation import router as rotation_router
from code_revolver.rotation.controller import RotationController


logger = get_logger(__name__)


def create_app(
    controller: RotationController, *, manage_lifecycle: bool = True
) -> FastAPI:
    """Create the FastAPI application around a rotation controller.

    Args:
        controller: Controller served by the rotation routes
        manage_lifecycle: Start the controller on startup and stop it on
            shutdown. Disable when the caller owns the controller's lifecycle.

    Returns:
        Configured FastAPI application instance.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if manage_lifecycle:
            await controller.start()
        logger.debug("server_start", manage_lifecycle=manage_lifecycle)

        yield

        logger.debug("server_stop")
        if manage_lifecycle:
            await controller.stop()

    app = FastAPI(
        title="Code Revolver",
        description="Account rotation control surface",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.rotation_controller = controller

    app.include_router(rotation_router)

    return app
