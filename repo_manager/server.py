#!/usr/bin/env python3
"""HTTP file repository server built on Starlette."""

import argparse
import os
import stat
import sys
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from typing import Any

import aiofiles
import aiofiles.os
import structlog
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.middleware import Middleware
from starlette.requests import ClientDisconnect, Request
from starlette.responses import FileResponse, JSONResponse, Response
from starlette.routing import Route

from .auth import AuthMode, NoAuthBackend, PasswordVerifier, StaticCredentialsBackend
from .auth.middleware import WWW_AUTHENTICATE, BasicAuthMiddleware
from .auth.models import AuthBackend
from .config import Config, ServerSettings, get_auth_mode, get_config_loader
from .exceptions import (
    INVALID_PATH_MESSAGE,
    ConfigError,
    PathEscapeError,
    RepoManagerError,
)
from .logging import configure_logging, get_log_level
from .permissions import Permission, PermissionTable
from .repository import (
    FileRepository,
    RepositoryProvider,
    RepositoryRegistry,
    strip_parent_prefix,
)

logger = structlog.get_logger()


def build_auth_backend(
    config: Config, auth_mode: AuthMode, verifier: PasswordVerifier
) -> AuthBackend:
    """Create the authentication backend for the configured mode."""
    if auth_mode == AuthMode.NONE:
        logger.warning("Authentication disabled, all requests are anonymous")
        return NoAuthBackend()
    return StaticCredentialsBackend(config.users, verifier)


def build_registry(config: Config, auth_backend: AuthBackend) -> RepositoryRegistry:
    """Create one repository per configured entry."""
    repositories: dict[str, RepositoryProvider] = {}
    for repo_config in config.repositories:
        repositories[repo_config.name] = FileRepository(
            name=repo_config.name,
            root=repo_config.path,
            permissions=PermissionTable(repo_config.permissions),
            auth_backend=auth_backend,
            follow_symlinks_outside_root=repo_config.follow_symlinks_outside_root,
        )
        logger.info(
            f"Repository configured: {repo_config.name}",
            repository=repo_config.name,
            path=repo_config.path,
        )
    return RepositoryRegistry(repositories)


def error_response(error: RepoManagerError) -> JSONResponse:
    headers = {"WWW-Authenticate": WWW_AUTHENTICATE} if error.status_code == 401 else None
    return JSONResponse(
        status_code=error.status_code, content={"error": error.message}, headers=headers
    )


def not_found(message: str) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": message})


async def _authorize_request(
    request: Request, required: Permission
) -> tuple[RepositoryProvider, str]:
    """Look up the repository, authorize the caller and resolve the path.

    Raises:
        RepoManagerError: Authorization or path failures
        LookupError: Unknown repository
    """
    registry: RepositoryRegistry = request.app.state.registry
    name = request.path_params["repository"]
    repository = registry.get_repository(name)
    if repository is None:
        raise LookupError(name)

    credentials = getattr(request.state, "credentials", None)
    outcome = await repository.authorize(
        credentials.username if credentials else None,
        credentials.password if credentials else None,
        required,
    )

    relative = strip_parent_prefix(request.path_params.get("path", ""))
    resolved = repository.resolve_path(relative)
    resolved = await run_in_threadpool(repository.ensure_real_path, resolved)

    logger.info(
        "Access granted",
        method=request.method,
        repository=name,
        path=relative,
        user=str(outcome),
    )
    return repository, resolved


async def retrieve(request: Request) -> Response:
    """Serve a file from a repository."""
    try:
        _, path = await _authorize_request(request, Permission.READ)
    except LookupError:
        return not_found("Could not find repository!")
    except RepoManagerError as e:
        return error_response(e)

    try:
        file_stat = await aiofiles.os.stat(path)
    except (FileNotFoundError, NotADirectoryError):
        return not_found("Could not find file!")

    if stat.S_ISDIR(file_stat.st_mode):
        return Response(b"")

    return FileResponse(path, stat_result=file_stat)


async def upload(request: Request) -> Response:
    """Stream a request body into a repository file."""
    try:
        repository, path = await _authorize_request(request, Permission.WRITE)
    except LookupError:
        return not_found("Could not find repository!")
    except RepoManagerError as e:
        return error_response(e)

    if path == repository.root or await aiofiles.os.path.isdir(path):
        return error_response(PathEscapeError(INVALID_PATH_MESSAGE))

    max_bytes = request.app.state.settings.max_upload_bytes
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        return JSONResponse(status_code=413, content={"error": "Upload too large!"})

    parent = os.path.dirname(path)
    temp_path = os.path.join(
        parent, f".{os.path.basename(path)}.{uuid.uuid4().hex}.part"
    )
    start_time = time.time()
    size = 0
    stored = False
    try:
        await aiofiles.os.makedirs(parent, exist_ok=True)
        async with aiofiles.open(temp_path, "wb") as f:
            async for chunk in request.stream():
                size += len(chunk)
                if size > max_bytes:
                    break
                await f.write(chunk)

        if size > max_bytes:
            logger.warning(
                "Upload exceeded size limit",
                repository=repository.name,
                max_bytes=max_bytes,
            )
            return JSONResponse(status_code=413, content={"error": "Upload too large!"})

        await aiofiles.os.replace(temp_path, path)
        stored = True
    except ClientDisconnect:
        logger.info(
            "Client disconnected during upload",
            repository=repository.name,
            received_bytes=size,
        )
        return Response(status_code=400)
    except OSError as e:
        logger.error(
            "Could not write file",
            repository=repository.name,
            error=str(e),
            error_type=type(e).__name__,
        )
        return JSONResponse(status_code=500, content={"error": "Could not write file!"})
    finally:
        # Synchronous so cleanup also runs inside a cancelled task
        if not stored:
            with suppress(FileNotFoundError):
                os.remove(temp_path)

    logger.info(
        "Upload complete",
        repository=repository.name,
        size_bytes=size,
        duration_ms=round((time.time() - start_time) * 1000, 2),
    )
    return Response(status_code=201)


async def health(request: Request) -> JSONResponse:
    registry: RepositoryRegistry = request.app.state.registry
    return JSONResponse({"status": "healthy", "repositories": len(registry)})


def create_app(
    registry: RepositoryRegistry,
    settings: ServerSettings | None = None,
    verifier: PasswordVerifier | None = None,
) -> Starlette:
    """Create the ASGI application serving ``registry``."""

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        yield
        if verifier is not None:
            verifier.shutdown()

    app = Starlette(
        routes=[
            Route("/health", health, methods=["GET"]),
            Route("/{repository}/{path:path}", retrieve, methods=["GET"]),
            Route("/{repository}/{path:path}", upload, methods=["PUT"]),
        ],
        middleware=[Middleware(BasicAuthMiddleware)],
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.settings = settings or ServerSettings()
    return app


def initialize_server(config: Config, auth_mode: AuthMode) -> Starlette:
    """Build verifier, backend, registry and app from a loaded config."""
    logger.info(f"Authentication mode: {auth_mode.value}", auth_mode=auth_mode.value)
    verifier = PasswordVerifier(
        max_workers=config.verifier.max_workers,
        max_pending=config.verifier.max_pending,
    )
    auth_backend = build_auth_backend(config, auth_mode, verifier)
    registry = build_registry(config, auth_backend)
    logger.info(
        f"Loaded {len(registry)} repositories", repository_count=len(registry)
    )
    return create_app(registry, config.server, verifier)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="repo-manager",
        description="Serve file repositories over HTTP with per-user permissions.",
    )
    parser.add_argument(
        "-c", "--config", metavar="FILE", help="configuration file (REPO_MANAGER_CONFIG)"
    )
    parser.add_argument("-H", "--host", help="listen address (HOST)")
    parser.add_argument("-p", "--port", type=int, help="listen port (PORT)")
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="increase log verbosity"
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the server."""
    import uvicorn

    args = parse_args(argv)
    configure_logging(get_log_level(args.verbose))

    try:
        config = get_config_loader(args.config).load()
    except ConfigError as e:
        logger.error("Could not load configuration", error=e.message)
        sys.exit(1)

    asgi_app: Any = initialize_server(config, get_auth_mode())

    host = args.host or os.getenv("HOST") or config.server.host
    port = args.port or int(os.getenv("PORT", str(config.server.port)))

    try:
        uvicorn.run(
            asgi_app,
            host=host,
            port=port,
            log_level="info",
            log_config=None,
        )
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")


if __name__ == "__main__":
    main()
