#!/usr/bin/env python3

"""Export the tgvault OpenAPI schema.

Writes ``openapi.json`` into a directory, or prints the schema when no
directory is given.
"""

import argparse
import json
from pathlib import Path

from tgvault.app.services.bundle import ServiceBundle
from tgvault.common.config import Settings
from tgvault.main import create_app


def build_schema() -> dict:
    # Routes do not depend on credentials; an unconfigured bundle is enough.
    app = create_app(ServiceBundle(settings=Settings(ENABLE_METRICS=False)))
    return app.openapi()


def export_openapi(target_dir: Path) -> Path:
    """Generate openapi.json under target_dir and return the file path."""
    target_dir.mkdir(parents=True, exist_ok=True)
    output_path = target_dir / "openapi.json"
    output_path.write_text(
        json.dumps(build_schema(), ensure_ascii=False, indent=2) + "\n",
        encoding="utf-8",
    )
    return output_path


def main() -> None:
    parser = argparse.ArgumentParser(description="Export the tgvault OpenAPI schema.")
    parser.add_argument(
        "target_dir",
        type=Path,
        nargs="?",
        help="Directory for openapi.json (created if missing); omit to print.",
    )
    args = parser.parse_args()

    if args.target_dir is None:
        print(json.dumps(build_schema(), ensure_ascii=False, indent=2))
        return
    output_path = export_openapi(args.target_dir.resolve())
    print(f"OpenAPI schema exported to {output_path}")


if __name__ == "__main__":
    main()
