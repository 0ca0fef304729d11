"""
Base router infrastructure for centralized error handling and response construction.

Routes return the ResponseSchema envelope; LabelMatrix exceptions propagate to
the app's exception handler, which turns them into the same envelope.
"""

import logging
from functools import wraps
from typing import Any, Callable

from fastapi import HTTPException

from LabelMatrix.exceptions import LabelMatrixException
from LabelMatrix.schemas.response import ResponseSchema

logger = logging.getLogger(__name__)


class BaseRouter:
    """Shared response construction and exception mapping for the print routers."""

    @staticmethod
    def build_success_response(data: Any = None, message: str = "Operation completed successfully") -> ResponseSchema:
        """
        Build a standardized success response.

        Args:
            data: Response data
            message: Success message

        Returns:
            Standardized ResponseSchema
        """
        return ResponseSchema(status="success", message=message, data=data)

    @staticmethod
    def handle_exception(e: Exception) -> Exception:
        """
        Map an exception to what the route should raise.

        LabelMatrix exceptions are passed through unchanged so the registered
        handler can report their status code and details.
        """
        if isinstance(e, (HTTPException, LabelMatrixException)):
            return e
        elif isinstance(e, ValueError):
            return HTTPException(status_code=400, detail=str(e))
        else:
            logger.error(f"Unexpected error: {str(e)}", exc_info=True)
            return HTTPException(status_code=500, detail="Internal server error")


def standard_error_handling(func: Callable) -> Callable:
    """
    Decorator that provides standardized error handling for route functions.

    Usage:
        @standard_error_handling
        async def my_route():
            return BaseRouter.build_success_response(data=result)
    """
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            raise BaseRouter.handle_exception(e)
    return wrapper
