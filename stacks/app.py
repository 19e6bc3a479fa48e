#!/usr/bin/env python3

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from stacks.routes import api
from stacks.core.api import StacksAPI
from stacks.configs import OPTIONS, CORS_ORIGINS
from stacks import __version__ as VERSION


def create_app(stacks: StacksAPI = None) -> FastAPI:
    stacks = stacks or StacksAPI()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        stacks.open()
        try:
            yield
        finally:
            stacks.close()

    app = FastAPI(
        title="Stacks API",
        description="Stacks: lending and attendance for school libraries",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.stacks = stacks

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api.router, prefix="/v1/api")
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("stacks.app:app", **OPTIONS)
