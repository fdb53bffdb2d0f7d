from typing import Any


def envelope(message: str, data: Any = None) -> dict[str, Any]:
    """Success body shared by every endpoint."""
    body: dict[str, Any] = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    return body
