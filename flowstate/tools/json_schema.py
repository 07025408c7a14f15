"""
Infer a JSON schema from a decoded JSON value.

Used to describe the shape of an API response to a model without sending
the (possibly huge) response itself.
"""

from typing import Any, Dict, List


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    raise TypeError(f"Value of type {type(value).__name__} is not JSON")


def _merge(schemas: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Merge the schemas of array items into one items schema."""
    types = []
    for schema in schemas:
        if schema["type"] not in types:
            types.append(schema["type"])

    if len(types) > 1:
        if all(t in ("integer", "number") for t in types):
            return {"type": "number"}
        return {"type": types}

    merged = dict(schemas[0])
    if types[0] == "object":
        properties: Dict[str, Any] = {}
        for schema in schemas:
            for key, sub in schema.get("properties", {}).items():
                properties.setdefault(key, []).append(sub)
        merged["properties"] = {key: _merge(subs) for key, subs in properties.items()}
    elif types[0] == "array":
        items = [schema["items"] for schema in schemas if "items" in schema]
        if items:
            merged["items"] = _merge(items)
    return merged


def infer_json_schema(value: Any) -> Dict[str, Any]:
    """
    Infer a JSON schema describing ``value``.

    Objects list their properties, arrays describe the merged shape of their
    items, scalars give their type.
    """
    kind = _type_name(value)
    if kind == "object":
        return {
            "type": "object",
            "properties": {key: infer_json_schema(item) for key, item in value.items()},
        }
    if kind == "array":
        if not value:
            return {"type": "array"}
        return {"type": "array", "items": _merge([infer_json_schema(item) for item in value])}
    return {"type": kind}
