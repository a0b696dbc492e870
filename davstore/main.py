import logging
from contextlib import AsyncExitStack
from typing import Literal

import anyio
from fastapi import FastAPI
from pydantic_settings import BaseSettings, SettingsConfigDict

from davstore.adapter import StorageAdapter
from davstore.api import Config, adapter_error_handler, dav, router
from davstore.depends import bind
from davstore.errors import StorageAdapterError
from davstore.storage import ObjectStore


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DAVSTORE_", extra="ignore")

    backend: Literal["s3", "memory"] = "s3"
    bucket: str = "davstore"
    access_key_id: str = ""
    access_key_secret: str = ""
    region: str = "us-east-1"
    endpoint: str | None = None
    host: str = "0.0.0.0"
    port: int = 8000
    prefix: str = "/dav"
    log_level: str = "INFO"


def make_app(adapter: StorageAdapter, config: Config) -> FastAPI:
    app = FastAPI()
    app.include_router(router)
    app.include_router(dav, prefix=config.prefix)
    app.add_exception_handler(StorageAdapterError, adapter_error_handler)  # type: ignore[arg-type]
    bind(app, StorageAdapter, adapter)
    bind(app, Config, config)
    return app


async def main() -> None:
    import uvicorn

    from davstore.storage.memory import InMemoryBackend
    from davstore.storage.s3 import S3Storage

    settings = Settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    async with AsyncExitStack() as stack:
        store: ObjectStore
        if settings.backend == "memory":
            store = InMemoryBackend()
        else:
            store = await stack.enter_async_context(
                S3Storage.connect(
                    bucket=settings.bucket,
                    access_key_id=settings.access_key_id,
                    access_key_secret=settings.access_key_secret,
                    region=settings.region,
                    endpoint=settings.endpoint,
                )
            )
        app = make_app(StorageAdapter(store), Config(prefix=settings.prefix))

        config = uvicorn.Config(app, host=settings.host, port=settings.port)
        server = uvicorn.Server(config)
        await server.serve()


if __name__ == "__main__":
    anyio.run(main)
