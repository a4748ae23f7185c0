# magistral: CLI entrypoint matching the console_script target; parses --folder/-f and --model/-m and hands off to the async REPL.

import asyncio
import pathlib
import sys

from .app import Magistral
from .errors import ConfigurationError


def main() -> None:
    """
    Magistral CLI entrypoint.

    Usage:
        magistral [--folder PATH|-f PATH] [--model NAME|-m NAME]

    Notes:
        - MAGISTRAL_API_KEY (or MISTRAL_API_KEY) must be set, or settings.api.api_key.
        - Without --folder the workspace is virtual and persisted under MAGISTRAL_HOME.
    """
    args = sys.argv[1:]

    if any(a in ("-h", "--help") for a in args):
        print("Usage: magistral [--folder PATH|-f PATH] [--model NAME|-m NAME]")
        print("Options:")
        print("  -f, --folder PATH   Edit a real directory instead of the virtual workspace.")
        print("  -m, --model NAME    Model id for this session (default: AI_MODEL).")
        print("Environment:")
        print("  MAGISTRAL_API_KEY, AI_MODEL, MAGISTRAL_API_URL, MAGISTRAL_HOME")
        return

    folder = None
    model = None
    i = 0
    while i < len(args):
        a = args[i]
        if a in ("-f", "--folder", "-m", "--model"):
            if i + 1 >= len(args):
                print(f"error: {a} requires an argument")
                sys.exit(2)
            if a in ("-f", "--folder"):
                folder = args[i + 1]
            else:
                model = args[i + 1]
            i += 2
            continue
        if a.startswith("--folder="):
            folder = a.split("=", 1)[1]
        elif a.startswith("--model="):
            model = a.split("=", 1)[1]
        else:
            print(f"error: unknown option: {a}")
            sys.exit(2)
        i += 1

    folder_path = pathlib.Path(folder).resolve() if folder else None
    if folder_path is not None and not folder_path.is_dir():
        print(f"error: not a directory: {folder_path}")
        sys.exit(2)

    try:
        app = Magistral(folder_path, model=model)
    except ConfigurationError as e:
        print(f"error: {e}")
        sys.exit(1)
    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        print("\nGoodbye.")


if __name__ == "__main__":
    main()
