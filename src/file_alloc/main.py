from contextlib import asynccontextmanager
from textwrap import dedent
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.routing import APIRoute
from fastapi.middleware.cors import CORSMiddleware

from file_alloc.adapters.queue import BaseQueue
from file_alloc.dependencies import build_file_manager, build_receiver
from file_alloc.errors import (
    FileAllocError,
    handle_broad_exceptions,
    handle_file_alloc_errors,
)
from file_alloc.manager import FileManager
from file_alloc.routers.files import router as files_router
from file_alloc.routers.health import router as health_router
from file_alloc.settings import Settings

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    file_manager: Optional[FileManager] = None,
    queue: Optional[BaseQueue] = None,
) -> FastAPI:
    """Create a FastAPI application.

    The file manager and queue are built from the settings unless given.
    """
    settings = settings or Settings()
    file_manager = file_manager or build_file_manager(settings)
    receiver = build_receiver(settings, file_manager, queue)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("closing file store and database connections")
        await file_manager.file_store.close()
        file_manager.alloc_table.database.close()

    app = FastAPI(
        title="File Alloc API",
        summary="Reserve, upload and track files in an object store",
        version="v1",
        description=dedent(
            """\
        Upload flow:

        | Step | Endpoint |
        | --- | --- |
        | Reserve an entry and get an upload URL | `POST /v1/files` |
        | PUT the bytes to the upload URL | (object store) |
        | Notify that the upload completed | `POST /v1/files/{bucketname}/uploaded` |
        | Download once processed | `GET /v1/files/{bucketname}/url` |
        """
        ),
        docs_url="/",  # its easier to find the docs when they live on the base url
        generate_unique_id_function=custom_generate_unique_id,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.file_manager = file_manager
    app.state.receiver = receiver

    app.include_router(files_router, prefix="/v1", tags=["files"])
    app.include_router(health_router, tags=["health"])

    app.add_exception_handler(FileAllocError, handle_file_alloc_errors)
    app.middleware("http")(handle_broad_exceptions)

    return app


def custom_generate_unique_id(route: APIRoute):
    """
    Generate prettier `operationId`s in the OpenAPI schema.

    These become the function names in generated client SDKs.
    """
    return f"{route.tags[0]}-{route.name}"


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=8000)
