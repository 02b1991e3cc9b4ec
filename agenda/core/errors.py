from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    CONFIG_ERROR = "CONFIG_ERROR"
    GATEWAY_ERROR = "GATEWAY_ERROR"
    PROVIDER_REJECTED = "PROVIDER_REJECTED"
    DATABASE_ERROR = "DATABASE_ERROR"


_DEFAULT_STATUS = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.CONFLICT: 409,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CONFIG_ERROR: 500,
    ErrorCode.GATEWAY_ERROR: 502,
    ErrorCode.PROVIDER_REJECTED: 402,
    ErrorCode.DATABASE_ERROR: 500,
}


class AppError(Exception):
    """Erro de domínio com mensagem segura para exibir ao usuário."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        status_code: Optional[int] = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code or _DEFAULT_STATUS[code]
        self.details = details

    def __repr__(self) -> str:
        return f"AppError(code={self.code.value!r}, status_code={self.status_code}, message={self.message!r})"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Sucesso ou falha tipados, para o chamador decidir entre recusa e falha de infraestrutura."""

    ok: bool
    data: Optional[T] = None
    error: Optional[AppError] = None

    def unwrap(self) -> T:
        if not self.ok:
            raise self.error
        return self.data


def ok(data: T = None) -> Result[T]:
    return Result(ok=True, data=data)


def fail(error: AppError) -> Result[Any]:
    return Result(ok=False, error=error)
