"""
Run Webserver - Startup Script
Launches the fmrmatch HTTP service with uvicorn.
"""

import argparse

import uvicorn

from fmrmatch.webserver.config import (
    HOST, PORT_HTTPS, PORT_HTTP, SSL_CERT_FILE, SSL_KEY_FILE, VERBOSE
)


def main():
    """Start server."""
    parser = argparse.ArgumentParser(description="fmrmatch WebServer")
    parser.add_argument("--host", default=HOST, help="Server host")
    parser.add_argument("--port", type=int, help="Server port")
    parser.add_argument("--ssl", action="store_true", help="Enable HTTPS/TLS")
    parser.add_argument("--cert", help="SSL certificate file")
    parser.add_argument("--key", help="SSL key file")
    parser.add_argument("--workers", type=int, help="Number of uvicorn workers")

    args = parser.parse_args()

    # Determine port
    port = args.port or (PORT_HTTPS if args.ssl else PORT_HTTP)

    # SSL configuration
    ssl_keyfile = None
    ssl_certfile = None

    if args.ssl:
        ssl_certfile = args.cert or str(SSL_CERT_FILE)
        ssl_keyfile = args.key or str(SSL_KEY_FILE)
        print(f"HTTPS enabled (cert: {ssl_certfile})")

    print()
    print("=" * 70)
    print("STARTING FMRMATCH WEBSERVER")
    print("=" * 70)
    print(f"Server: {args.host}:{port}")
    print(f"Protocol: {'HTTPS' if args.ssl else 'HTTP'}")
    print(f"Workers: {args.workers or 1}")
    print(f"API Docs: {'https' if args.ssl else 'http'}://localhost:{port}/docs")
    print("=" * 70)
    print()

    uvicorn.run(
        "fmrmatch.webserver.server:app",
        host=args.host,
        port=port,
        ssl_keyfile=ssl_keyfile,
        ssl_certfile=ssl_certfile,
        reload=False,
        workers=args.workers or 1,
        log_level="info" if VERBOSE else "warning"
    )


if __name__ == "__main__":
    main()
