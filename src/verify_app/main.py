import argparse
import logging
import sys
import time
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="FakeVerifier API Server")
    parser.add_argument(
        "--host", type=str, default="0.0.0.0", help="Host to bind the server to."
    )
    parser.add_argument("--port", type=int, default=8000, help="Port to run the server on.")
    parser.add_argument(
        "--env-file", type=str, default=".env", help="Path of the .env file to load."
    )
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    _start_time = time.time()

    # Environment first: provider settings are read once, at app creation
    env_file = Path(args.env_file)
    if env_file.exists():
        load_dotenv(env_file)

    console = Console()

    with console.status("[dim]Loading server components...", spinner="dots"):
        import uvicorn

        from fallback_library import PROVIDER_PLUGINS
        from verify_app.app import create_app
        from verify_app.logging_config import configure_logging
        from verify_app.settings import AppSettings

    settings = AppSettings.from_env()
    log_dir = configure_logging(settings.log_dir)
    app = create_app(app_settings=settings)

    configured = sorted(
        {name for route in app.state.routes.values() for name in route.client.provider_names}
    )
    _elapsed = time.time() - _start_time

    console.print("━" * 70)
    console.print(f"Starting FakeVerifier API on [bold]{args.host}:{args.port}[/bold]")
    if configured:
        console.print(f"Providers: [green]{', '.join(configured)}[/green]")
    else:
        console.print(
            "Providers: [bold red]✗ None configured[/bold red] "
            "(set OPENROUTER_API_KEY, OPENAI_API_KEY or HF_API_TOKEN + HF_API_URL)"
        )
    console.print(f"Logs: {log_dir.resolve()}")
    console.print("━" * 70)
    console.print(
        f"✓ Server ready in {_elapsed:.2f}s ({len(PROVIDER_PLUGINS)} provider adapters available)"
    )
    logging.debug(f"Startup took {_elapsed:.2f}s")

    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    sys.exit(main())
