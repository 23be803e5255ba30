import uuid
from typing import Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import selectinload

from models.enums import PropertyStatus
from models.models import Customer, Property


class PropertyRepo:
    def __init__(self, db):
        self.db = db

    async def get_property_id(self, property_id: uuid.UUID) -> Optional[Property]:
        result = await self.db.execute(
            select(Property)
            .options(selectinload(Property.project))
            .where(Property.id == property_id)
        )
        return result.scalar_one_or_none()

    async def set_status(
        self,
        property_id: uuid.UUID,
        status: PropertyStatus,
        *,
        only_from: Iterable[PropertyStatus] | None = None,
    ) -> bool:
        stmt = update(Property).where(Property.id == property_id)
        if only_from is not None:
            stmt = stmt.where(Property.status.in_(list(only_from)))
        result = await self.db.execute(
            stmt.values(status=status).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class CustomerRepo:
    def __init__(self, db):
        self.db = db

    async def get_customer_id(self, customer_id: uuid.UUID) -> Optional[Customer]:
        result = await self.db.execute(
            select(Customer).where(Customer.id == customer_id)
        )
        return result.scalar_one_or_none()
