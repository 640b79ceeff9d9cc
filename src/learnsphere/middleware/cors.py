"""CORS configuration for the learner and instructor web clients."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from learnsphere.config import Settings


def setup_cors(app: FastAPI, settings: Settings) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
    )
