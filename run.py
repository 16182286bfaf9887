"""Convenience runner for the RotaFrete API."""

import uvicorn

from apps.rotafrete.settings import settings


def main():
    uvicorn.run(
        "apps.rotafrete.main:app",
        host=settings.APP_HOST,
        port=settings.APP_PORT,
        reload=True,
        reload_dirs=["apps"],
    )


if __name__ == "__main__":
    main()
