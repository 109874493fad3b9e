from __future__ import annotations

import os

import uvicorn


def main() -> None:
    """Serve the API with uvicorn; HOST/PORT/LOG_LEVEL come from the environment."""
    uvicorn.run(
        "vidtube.app:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
        proxy_headers=True,
    )


if __name__ == "__main__":
    main()
