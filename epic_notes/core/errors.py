# epic_notes/core/errors.py
from fastapi import HTTPException, status


class AppError(HTTPException):
    pass


def bad_request(code: str, message: str):
    raise AppError(status_code=status.HTTP_400_BAD_REQUEST, detail={"code": code, "message": message})


def not_found(code: str, message: str):
    raise AppError(status_code=status.HTTP_404_NOT_FOUND, detail={"code": code, "message": message})


def invariant_response(condition: object, code: str, message: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> None:
    """Bricht mit 4xx ab, wenn eine fachliche Invariante verletzt würde."""
    if not condition:
        raise AppError(status_code=status_code, detail={"code": code, "message": message})
