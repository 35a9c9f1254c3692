import json
from functools import lru_cache
from pathlib import Path

from jsonschema import validate, ValidationError

SCHEMA_DIR = Path(__file__).resolve().parents[1] / "schemas"


def validate_json(instance, schema):
    try:
        validate(instance=instance, schema=schema)
        return True, None
    except ValidationError as e:
        return False, str(e)


@lru_cache(maxsize=None)
def load_schema(name: str) -> dict:
    return json.loads((SCHEMA_DIR / name).read_text(encoding="utf-8"))
