from flask import request

from services.errors import InvalidInput

def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}

def require_int(data: dict, name: str, default=None) -> int:
    value = data.get(name, default)
    if value is None or value == "":
        raise InvalidInput(f"{name} is required")
    if isinstance(value, bool):
        raise InvalidInput(f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise InvalidInput(f"{name} must be an integer")

def require_str(data: dict, name: str, max_len: int = 255) -> str:
    value = data.get(name)
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"{name} is required")
    value = value.strip()
    if len(value) > max_len:
        raise InvalidInput(f"{name} is too long")
    return value
