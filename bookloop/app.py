#!/usr/bin/env python3

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from bookloop.routes import api
from bookloop.configs import OPTIONS
from bookloop.core import db
from bookloop import __version__ as VERSION

db.init()

app = FastAPI(
    title="Bookloop API",
    description="Bookloop: borrow lifecycle and fine engine for libraries",
    version=VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api.router, prefix="/v1/api")

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("bookloop.app:app", **OPTIONS)
