#!/usr/bin/env python3
"""
Export the OpenAPI specification of the Gatherly events API to openapi.json.
"""

import json
import sys
import os

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from gatherly_events.main import app


def export_openapi_spec(output_file: str = "openapi.json") -> None:
    """Write the OpenAPI schema and print a summary of its paths."""
    openapi_schema = app.openapi()

    with open(output_file, "w", encoding="utf-8") as f:
        json.dump(openapi_schema, f, indent=2, ensure_ascii=False)

    info = openapi_schema.get("info", {})
    paths = openapi_schema.get("paths", {})
    endpoint_count = sum(len(methods) for methods in paths.values())

    print(f"OpenAPI specification exported to: {output_file}")
    print(f"{info.get('title', 'unknown')} {info.get('version', 'unknown')}, {endpoint_count} endpoints")
    for path in sorted(paths):
        print(f"  {path}: {', '.join(method.upper() for method in paths[path])}")


if __name__ == "__main__":
    export_openapi_spec(sys.argv[1] if len(sys.argv) > 1 else "openapi.json")
