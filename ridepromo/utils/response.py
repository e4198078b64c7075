from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder


def success(data: Optional[Any] = None, message: str = "Success", meta: Optional[Dict] = None):
    """Wrap a payload in the API's standard envelope."""
    body = {"success": True, "message": message, "data": data, "errors": None}
    if meta is not None:
        body["meta"] = meta
    return jsonable_encoder(body)
