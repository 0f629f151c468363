"""CLI entry point for the agent-gateway package."""

from __future__ import annotations

import logging
import sys


def _print_setup_banner(provider: str, port: int, *, for_startup: bool = True) -> None:
    """Print setup instructions. If for_startup, show 'gateway started' line; else show 'Setup' header."""
    provider_note = "offline stub, no API key used" if provider == "stub" else "per-request client type"
    base = f"http://localhost:{port}"
    print()
    if for_startup:
        print("Agent gateway started")
    else:
        print("Agent Gateway Setup")
    print("Provider: {} ({})".format(provider or "default", provider_note))
    print()
    print("Chat:     POST {}/chat".format(base))
    print("Stream:   POST {}/chat/stream".format(base))
    print("Schedule: POST {}/chat/schedule".format(base))
    print("Health:   GET  {}/health".format(base))
    print()
    print("API keys travel with each request (apiKey, baseUrl, model, clientType).")
    print("Optional .env settings:")
    print()
    print("   PORT=8081")
    print("   CORS_ORIGINS=*")
    print("   PROVIDER=stub            # echo replies without calling any provider")
    print("   PROVIDER_TIMEOUT=60")
    print("   DEFAULT_MAX_STEPS=50")
    print("   LOG_LEVEL=INFO")
    print()


def _print_help() -> None:
    print("Agent Gateway CLI")
    print()
    print("Usage:")
    print("  agent-gateway               Start the gateway server")
    print("  agent-gateway setup         Print setup/env guidance")
    print()


def main() -> None:
    """Run the agent gateway or handle setup/help commands."""
    from .config import get_settings

    settings = get_settings()

    if len(sys.argv) > 1:
        subcommand = sys.argv[1].strip().lower()
        if subcommand in {"-h", "--help", "help"}:
            _print_help()
            sys.exit(0)
        if subcommand == "setup":
            _print_setup_banner(settings.provider_name, settings.http_port, for_startup=False)
            sys.exit(0)
        print(f"Unknown command: {subcommand}", file=sys.stderr)
        _print_help()
        sys.exit(2)

    import uvicorn

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    _print_setup_banner(settings.provider_name, settings.http_port, for_startup=True)

    uvicorn.run(
        "agent_gateway.main:app",
        host=settings.host,
        port=settings.http_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
    sys.exit(0)
