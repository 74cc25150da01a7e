from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger


class DomainError(Exception):
    """Business rule violation, reported to the client as 400."""

    status_code = status.HTTP_400_BAD_REQUEST
    detail = "Некорректный запрос"

    def __init__(self, detail: str = None):
        super().__init__(detail or self.detail)
        if detail:
            self.detail = detail


class DuplicateEmail(DomainError):
    detail = "Пользователь с таким email уже существует"


class DuplicatePartner(DomainError):
    detail = "Пользователь уже является партнёром"


class InvalidReferralCode(DomainError):
    detail = "Неверный реферальный код"


class InvalidTransition(DomainError):
    detail = "Недопустимый переход статуса реферала"


class ReferralCodeExhausted(DomainError):
    detail = "Не удалось сгенерировать уникальный реферальный код"


class NotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    detail = "Не найдено"


class UserNotFound(NotFound):
    detail = "Пользователь не найден"


class PartnerNotFound(NotFound):
    detail = "Партнёр не найден"


class ProjectNotFound(NotFound):
    detail = "Проект не найден"


class ReferralNotFound(NotFound):
    detail = "Реферал не найден"


class TicketNotFound(NotFound):
    detail = "Тикет не найден"


class NotificationNotFound(NotFound):
    detail = "Уведомление не найдено"


class PaymentNotFound(NotFound):
    detail = "Платёж не найден"


class PaymentGatewayError(DomainError):
    status_code = status.HTTP_502_BAD_GATEWAY
    detail = "Ошибка платёжного шлюза"


async def domain_error_handler(request: Request, exc: DomainError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Некорректные данные", "errors": jsonable_encoder(exc.errors())},
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on {} {}", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Внутренняя ошибка сервера"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
