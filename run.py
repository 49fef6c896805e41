"""
Script to run the KPay gateway service with hot reload.
"""

import os
from pathlib import Path

import uvicorn


def main():
    """Run the server with hot reload enabled."""
    env_path = Path(__file__).parent / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(env_path)

    host = os.getenv("KPAY_HOST", "0.0.0.0")
    port = int(os.getenv("KPAY_PORT", "8000"))
    reload = os.getenv("KPAY_RELOAD", "true").lower() == "true"

    uvicorn.run(
        "kpay_gateway.main:app",
        host=host,
        port=port,
        reload=reload,
        reload_dirs=["kpay_gateway"],
        log_level="debug",
    )


if __name__ == "__main__":
    main()
