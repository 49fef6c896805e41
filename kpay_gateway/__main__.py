"""
Main entry point for running the KPay gateway service.
"""

import uvicorn

from kpay_gateway.settings import Settings


def main():
    """Run the service."""
    settings = Settings()
    uvicorn.run(
        "kpay_gateway.main:app",
        host=settings.get_app_host(),  # nosec B104
        port=settings.get_app_port(),
        reload=settings.get_app_reload(),
        log_level=settings.get_log_level().lower(),
    )


if __name__ == "__main__":
    main()
