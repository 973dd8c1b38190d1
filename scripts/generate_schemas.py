"""Generate JSON schemas for the entity models and save to schemas/ directory.

Run against an installed ocabundle (pip install -e .).
"""

import json
from pathlib import Path

from ocabundle.kernel.models import (
    AttributeMapping,
    CaptureBase,
    CharacterEncoding,
    Conformance,
    Format,
    Label,
    Style,
)
from ocabundle._internal.ingest.style import StyleJsonFile

MODELS = {
    "capture_base": CaptureBase,
    "character_encoding": CharacterEncoding,
    "label": Label,
    "conformance": Conformance,
    "format": Format,
    "style": Style,
    "attribute_mapping": AttributeMapping,
    "style_description": StyleJsonFile,
}


def generate_schemas():
    """Generate JSON schemas for all entity models."""
    schemas_dir = Path(__file__).parent.parent / "schemas"
    schemas_dir.mkdir(exist_ok=True)

    for name, model in MODELS.items():
        schema = model.model_json_schema(by_alias=True)
        schema_path = schemas_dir / f"{name}.schema.json"
        with open(schema_path, 'w', encoding='utf-8') as f:
            json.dump(schema, f, indent=2, ensure_ascii=False)
        print(f"Generated: {schema_path}")

    print("\nSchema generation complete!")


if __name__ == "__main__":
    generate_schemas()
