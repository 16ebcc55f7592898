"""The response envelope: {success, message, data} or {success, message, errors}."""
from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def success(data=None, message: str = "Success", status_code: int = status.HTTP_200_OK) -> JSONResponse:
    """Successful envelope; data is always present, possibly null"""
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"success": True, "message": message, "data": data}),
    )


def error(message: str = "Error", status_code: int = status.HTTP_400_BAD_REQUEST,
          errors: dict | None = None) -> JSONResponse:
    """Error envelope; errors is included only when non-empty"""
    content = {"success": False, "message": message}
    if errors:
        content["errors"] = errors
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))
