import uvicorn

from app.hcp_proxy.config import parse_port
from app.vars import HOST, LOG_LEVEL, PORT


def main():
    # Bind to all interfaces by default for container deployments
    uvicorn.run(
        "app.server:app",
        host=HOST,
        port=parse_port(PORT),
        log_level=LOG_LEVEL.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
