"""CORS for the learning platform frontends."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from learnrank.config import Settings


def setup_cors(app: FastAPI, settings: Settings) -> None:
    # Read-mostly API: profiles and leaderboards, plus activity and admin posts.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-Id"],
        expose_headers=["X-Request-Id"],
    )
