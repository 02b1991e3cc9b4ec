import logging
from datetime import time, timedelta

from sqlmodel import Session, select

from agenda.core.security import get_password_hash
from agenda.core.timezone import local_to_utc, utc_to_local, utcnow
from agenda.database import create_db_and_tables, engine
from agenda.models.availability_block import AvailabilityBlock
from agenda.models.business_hours import BusinessHours
from agenda.models.service import Service
from agenda.models.tenant_settings import TenantSettings
from agenda.models.user import User

logger = logging.getLogger(__name__)


TENANT_ID = 1
OWNER_EMAIL = "dona@estudio.local"
OWNER_PASSWORD = "troque-esta-senha"


def main():
    create_db_and_tables()

    with Session(engine) as session:
        # 1) dona do estúdio
        owner = session.exec(select(User).where(User.email == OWNER_EMAIL)).first()
        if not owner:
            owner = User(
                name="Dona do Estúdio",
                email=OWNER_EMAIL,
                role="owner",
                tenant_id=TENANT_ID,
                password_hash=get_password_hash(OWNER_PASSWORD),
            )
            session.add(owner)
        tenant_id = owner.tenant_id

        # 2) horários (seg-sáb 08-18, domingo fechado)
        for weekday in range(7):
            closed = weekday == 6
            row = session.exec(
                select(BusinessHours).where(
                    BusinessHours.tenant_id == tenant_id,
                    BusinessHours.weekday == weekday,
                )
            ).first()
            if not row:
                row = BusinessHours(tenant_id=tenant_id, weekday=weekday)
            row.is_closed = closed
            row.open_time = None if closed else time(8, 0)
            row.close_time = None if closed else time(18, 0)
            session.add(row)

        # 3) buffers padrão
        settings = session.exec(select(TenantSettings).where(TenantSettings.tenant_id == tenant_id)).first()
        if not settings:
            session.add(TenantSettings(tenant_id=tenant_id, default_studio_buffer=15, default_home_buffer=45))

        # 4) serviços de exemplo (se não existir nenhum)
        existing_service = session.exec(select(Service).where(Service.tenant_id == tenant_id)).first()
        if not existing_service:
            session.add_all(
                [
                    Service(tenant_id=tenant_id, name="Massagem relaxante", duration_minutes=60, price=150.0,
                            buffer_before_minutes=15, buffer_after_minutes=15),
                    Service(tenant_id=tenant_id, name="Drenagem linfática", duration_minutes=90, price=220.0,
                            home_visit_fee=40.0),
                    Service(tenant_id=tenant_id, name="Reflexologia", duration_minutes=45, price=110.0,
                            custom_buffer_minutes=10, accepts_home_visit=False),
                ]
            )

        # 5) bloqueio de exemplo: amanhã 15:00-16:00 (hora local)
        tomorrow = utc_to_local(utcnow()).date() + timedelta(days=1)
        block_start = local_to_utc(tomorrow, time(15, 0))
        block_end = local_to_utc(tomorrow, time(16, 0))
        exists_block = session.exec(
            select(AvailabilityBlock).where(
                AvailabilityBlock.tenant_id == tenant_id,
                AvailabilityBlock.start_time == block_start,
            )
        ).first()
        if not exists_block:
            session.add(AvailabilityBlock(tenant_id=tenant_id, start_time=block_start, end_time=block_end,
                                          reason="Teste"))

        session.commit()

    logger.info("Seed concluído: tenant=%s dona=%s", TENANT_ID, OWNER_EMAIL)
    logger.info("Horários: seg-sáb 08-18; domingo fechado")
    logger.info("Bloqueio: %s 15:00-16:00 (se não existia)", tomorrow.isoformat())


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    main()
