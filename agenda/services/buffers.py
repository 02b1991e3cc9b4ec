import math
from typing import NamedTuple, Optional

from agenda.models.service import Service
from agenda.models.tenant_settings import TenantSettings


DEFAULT_BUFFER_MINUTES = 30


class Buffers(NamedTuple):
    before: int
    after: int


def resolve_buffer(*candidates) -> int:
    """Primeiro candidato finito e > 0, da esquerda para a direita; 0 se nenhum servir."""
    for value in candidates:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if math.isfinite(value) and value > 0:
            return value
    return 0


def resolve_service_buffers(
    service: Optional[Service],
    settings: Optional[TenantSettings],
    is_home_visit: bool = False,
) -> Buffers:
    # cascata: serviço -> override global -> padrão domiciliar -> buffer do serviço -> padrão estúdio -> 30
    home_default = settings.default_home_buffer if (settings and is_home_visit) else None

    def cascade(service_value, settings_value) -> int:
        return resolve_buffer(
            service_value,
            settings_value,
            home_default,
            service.custom_buffer_minutes if service else None,
            settings.default_studio_buffer if settings else None,
            DEFAULT_BUFFER_MINUTES,
        )

    return Buffers(
        before=cascade(
            service.buffer_before_minutes if service else None,
            settings.buffer_before_minutes if settings else None,
        ),
        after=cascade(
            service.buffer_after_minutes if service else None,
            settings.buffer_after_minutes if settings else None,
        ),
    )
