from __future__ import annotations

import os

import uvicorn


def serve() -> None:
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "4000"))
    uvicorn.run("collab.main:application", host=host, port=port)


if __name__ == "__main__":
    serve()
