# storefront/repos/discount_repo.py
from datetime import datetime
from decimal import Decimal

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from storefront.data.models.discount_code import DiscountCodeModel


class DiscountRepo:
    def __init__(self, db: Session):
        self.db = db

    def get(self, code: str) -> DiscountCodeModel | None:
        stmt = (
            select(DiscountCodeModel)
            .where(DiscountCodeModel.code == code.strip().upper())
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def find_all(self, active_only: bool = False) -> list[DiscountCodeModel]:
        stmt = select(DiscountCodeModel).order_by(DiscountCodeModel.code)
        if active_only:
            stmt = stmt.where(DiscountCodeModel.is_active.is_(True))
        return list(self.db.execute(stmt).scalars().all())

    def add(self, discount: DiscountCodeModel) -> DiscountCodeModel:
        self.db.add(discount)
        self.db.flush()
        return discount

    def try_consume(self, code: str, order_amount: Decimal, now: datetime) -> int:
        """
        Sprawdzenie i inkrementacja uzycia w jednym UPDATE:

        UPDATE discount_codes SET used_count = used_count + 1
        WHERE code = :code AND is_active
          AND (expires_at IS NULL OR expires_at > :now)
          AND (usage_limit IS NULL OR used_count < usage_limit)
          AND (min_order_amount IS NULL OR min_order_amount <= :amount)

        Returns rowcount: 1 means the code was consumed.
        """
        stmt = (
            update(DiscountCodeModel)
            .where(
                DiscountCodeModel.code == code.strip().upper(),
                DiscountCodeModel.is_active.is_(True),
                or_(DiscountCodeModel.expires_at.is_(None), DiscountCodeModel.expires_at > now),
                or_(
                    DiscountCodeModel.usage_limit.is_(None),
                    DiscountCodeModel.used_count < DiscountCodeModel.usage_limit,
                ),
                or_(
                    DiscountCodeModel.min_order_amount.is_(None),
                    DiscountCodeModel.min_order_amount <= order_amount,
                ),
            )
            .values(used_count=DiscountCodeModel.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount

    def release(self, code: str) -> int:
        #nigdy ponizej zera
        stmt = (
            update(DiscountCodeModel)
            .where(DiscountCodeModel.code == code.strip().upper(), DiscountCodeModel.used_count > 0)
            .values(used_count=DiscountCodeModel.used_count - 1)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
