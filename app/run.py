#!/usr/bin/env python3
"""Family Trips Startup Script"""

import os
import uvicorn

from familytrips import config


def _bind_address():
    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))

    # Docker containers need to bind to all interfaces
    if os.getenv("DOCKER_ENV") == "true":
        host = "0.0.0.0"  # nosec B104
    return host, port


def main():
    """Serve the Family Trips API with uvicorn."""
    host, port = _bind_address()
    in_docker = os.getenv("DOCKER_ENV") == "true"

    print("🚀 Starting Family Trips API...")
    if config.CACHE_ENABLED:
        print(f"🗄️  Response cache: TTL {config.CACHE_DEFAULT_TTL}s, sweep every {config.CACHE_SWEEP_INTERVAL:g}s")
    else:
        print("🗄️  Response cache disabled")
    print(f"🌐 Listening on http://{host}:{port} (health: /health/detailed)")

    uvicorn.run(
        "familytrips.main:app",
        host=host,
        port=port,
        # File watchers misbehave on Docker volume mounts
        reload=not in_docker,
        log_level="info"
    )


if __name__ == "__main__":
    main()
