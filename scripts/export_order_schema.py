"""Export the canonical order record JSON Schema."""

from __future__ import annotations

import json
from pathlib import Path

from order_integrity.schemas import CanonicalOrderRecord


def main() -> None:
    """Write the JSON Schema for :class:`CanonicalOrderRecord` to the repository root."""

    schema = CanonicalOrderRecord.model_json_schema(by_alias=True)
    output_path = Path(__file__).resolve().parent.parent / "canonical_order_schema.json"
    output_path.write_text(json.dumps(schema, indent=2), encoding="utf-8")


if __name__ == "__main__":
    main()
