import logging

from django.db.models import ProtectedError
from rest_framework import exceptions as drf_exceptions
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler
from rest_framework.views import set_rollback

logger = logging.getLogger("shop")


class ShopError(drf_exceptions.APIException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Error interno del servidor"
    default_code = "error"

    def __init__(self, detail=None, code=None, details=None):
        super().__init__(detail, code)
        self.details = details


class ValidationError(ShopError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Datos inválidos"
    default_code = "invalid"


class NotFoundError(ShopError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Recurso no encontrado"
    default_code = "not_found"


class AuthorizationError(ShopError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "No autorizado"
    default_code = "unauthorized"


class ConflictError(ShopError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Conflicto con el estado actual"
    default_code = "conflict"


class UpstreamError(ShopError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Error en un servicio externo"
    default_code = "upstream"


class InternalError(ShopError):
    pass


class CartEmpty(ValidationError):
    default_detail = "El carrito está vacío"
    default_code = "cart_empty"


class InvalidStatusValue(ValidationError):
    default_detail = "Estado inválido"
    default_code = "invalid_status"


class InvalidSignature(ValidationError):
    default_detail = "Invalid signature"
    default_code = "invalid_signature"


class ProductNotFound(NotFoundError):
    default_detail = "Producto no encontrado"


class CategoryNotFound(NotFoundError):
    default_detail = "Categoría no encontrada"


class OrderNotFound(NotFoundError):
    default_detail = "Pedido no encontrado"


class OutOfStock(ConflictError):
    default_detail = "Stock insuficiente"
    default_code = "out_of_stock"


class DuplicateSku(ConflictError):
    default_detail = "El SKU ya está en uso"
    default_code = "duplicate_sku"


class PaymentGatewayError(UpstreamError):
    default_detail = "Error al crear sesión de pago"
    default_code = "payment_gateway"


def _body(message, details=None):
    body = {"error": message}
    if details:
        body["details"] = details
    return body


def exception_handler(exc, context):
    """Render every API error as ``{"error": ...}``; unexpected errors become a bare 500."""
    if isinstance(exc, ShopError):
        set_rollback()
        return Response(_body(str(exc.detail), exc.details), status=exc.status_code)

    if isinstance(exc, drf_exceptions.ValidationError):
        set_rollback()
        return Response(_body(ValidationError.default_detail, exc.detail), status=status.HTTP_400_BAD_REQUEST)

    if isinstance(exc, (drf_exceptions.NotAuthenticated, drf_exceptions.AuthenticationFailed)):
        return Response(_body(AuthorizationError.default_detail), status=status.HTTP_401_UNAUTHORIZED)

    if isinstance(exc, ProtectedError):
        set_rollback()
        return Response(
            _body("No se puede eliminar porque tiene registros asociados"), status=status.HTTP_400_BAD_REQUEST
        )

    response = drf_exception_handler(exc, context)
    if response is not None:
        detail = response.data.get("detail") if isinstance(response.data, dict) else None
        response.data = _body(str(detail) if detail else ShopError.default_detail)
        return response

    view = context.get("view")
    logger.exception("unhandled error in %s", view.__class__.__name__ if view else "unknown view")
    set_rollback()
    return Response(_body(InternalError.default_detail), status=status.HTTP_500_INTERNAL_SERVER_ERROR)
