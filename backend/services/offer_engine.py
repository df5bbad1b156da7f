"""
Offer engine: coupon validation, discount calculation and redemption.

``validate`` only reads. ``apply`` is called once per completed order; it
re-runs the checks and then mutates with guarded statements, so neither
the offer's usage limit nor a user's per-user limit can be overshot by
concurrent orders.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.clock import Clock, as_utc, utcnow
from core.domain.offer import (
    ALL_PLANS,
    DiscountType,
    OfferApplication,
    OfferRejection,
    OfferValidation,
    check_offer,
    compute_discount,
    normalize_code,
    to_money,
)
from infrastructure.database.models.offer import Offer, OfferOrder, OfferRedemption
from infrastructure.database.upsert import insert_for

logger = logging.getLogger(__name__)

# Fields an administrator may change after creation; the code is fixed
EDITABLE_FIELDS = frozenset({
    "name",
    "description",
    "discount_type",
    "discount_value",
    "max_discount_amount",
    "min_amount",
    "applicable_plans",
    "start_date",
    "end_date",
    "usage_limit",
    "per_user_limit",
    "is_active",
})
NULLABLE_FIELDS = frozenset({"description", "max_discount_amount", "usage_limit"})


def _check_terms(discount_type: str, discount_value: Decimal, start_date: datetime, end_date: datetime) -> None:
    if Decimal(discount_value) < 0:
        raise ValueError("discount_value must be non-negative")
    if DiscountType(discount_type) is DiscountType.PERCENTAGE and Decimal(discount_value) > 100:
        raise ValueError("percentage discount cannot exceed 100")
    if as_utc(end_date) < as_utc(start_date):
        raise ValueError("end_date must not precede start_date")


class OfferEngine:
    """Validates and redeems offers."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    @staticmethod
    async def _find(session: AsyncSession, code: str, for_update: bool = False) -> Optional[Offer]:
        stmt = select(Offer).where(Offer.code == code)
        if for_update:
            stmt = stmt.with_for_update()
        return await session.scalar(stmt)

    @staticmethod
    async def _user_usage(session: AsyncSession, offer_id: str, user_id: Optional[str]) -> int:
        if not user_id:
            return 0
        total = await session.scalar(
            select(func.coalesce(func.sum(OfferRedemption.usage_count), 0)).where(
                OfferRedemption.offer_id == offer_id,
                OfferRedemption.user_id == user_id,
            )
        )
        return int(total or 0)

    async def create_offer(
        self,
        *,
        code: str,
        name: str,
        discount_type: str,
        discount_value: Decimal,
        start_date: datetime,
        end_date: datetime,
        description: Optional[str] = None,
        max_discount_amount: Optional[Decimal] = None,
        min_amount: Decimal = Decimal("0"),
        applicable_plans: Optional[list[str]] = None,
        usage_limit: Optional[int] = None,
        per_user_limit: int = 1,
        is_active: bool = True,
    ) -> Offer:
        """
        Store a new offer under its normalized code.

        Raises:
            ValueError: Discount terms or dates are inconsistent
            IntegrityError: An offer with the same code exists
        """
        discount_type = DiscountType(discount_type)
        _check_terms(discount_type, discount_value, start_date, end_date)

        offer = Offer(
            code=normalize_code(code),
            name=name,
            description=description,
            discount_type=discount_type.value,
            discount_value=Decimal(discount_value),
            max_discount_amount=max_discount_amount,
            min_amount=Decimal(min_amount),
            applicable_plans=list(applicable_plans) if applicable_plans else [ALL_PLANS],
            start_date=start_date,
            end_date=end_date,
            usage_limit=usage_limit,
            used_count=0,
            per_user_limit=per_user_limit,
            is_active=is_active,
        )
        async with self._session_factory() as session:
            session.add(offer)
            await session.commit()
            await session.refresh(offer)
        logger.info("Offer %s created", offer.code, extra={"offer_code": offer.code})
        return offer

    async def list_offers(self) -> list[Offer]:
        """All offers, newest first."""
        async with self._session_factory() as session:
            result = await session.scalars(select(Offer).order_by(Offer.created_at.desc(), Offer.code))
            return list(result.all())

    async def get_offer(self, offer_id: str) -> Optional[Offer]:
        async with self._session_factory() as session:
            return await session.get(Offer, offer_id)

    async def update_offer(self, offer_id: str, **changes) -> Optional[Offer]:
        """
        Change an offer's terms, window, limits or active flag.

        Returns:
            The updated offer, or None when it does not exist

        Raises:
            ValueError: Unknown field, inconsistent terms, or a usage limit
                below the redemptions already made
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Offer fields cannot be changed: {', '.join(sorted(unknown))}")
        cleared = {f for f, v in changes.items() if v is None} - NULLABLE_FIELDS
        if cleared:
            raise ValueError(f"Offer fields cannot be empty: {', '.join(sorted(cleared))}")
        if "discount_type" in changes:
            changes["discount_type"] = DiscountType(changes["discount_type"]).value
        if "applicable_plans" in changes:
            changes["applicable_plans"] = list(changes["applicable_plans"] or ()) or [ALL_PLANS]

        async with self._session_factory() as session:
            offer = await session.scalar(select(Offer).where(Offer.id == offer_id).with_for_update())
            if offer is None:
                return None

            _check_terms(
                changes.get("discount_type", offer.discount_type),
                changes.get("discount_value", offer.discount_value),
                changes.get("start_date", offer.start_date),
                changes.get("end_date", offer.end_date),
            )
            usage_limit = changes.get("usage_limit", offer.usage_limit)
            if usage_limit is not None and usage_limit < offer.used_count:
                raise ValueError("usage_limit cannot be below the redemptions already made")

            for field, value in changes.items():
                setattr(offer, field, value)
            await session.commit()
            await session.refresh(offer)

        logger.info(
            "Offer %s updated: %s", offer.code, ", ".join(sorted(changes)),
            extra={"offer_code": offer.code},
        )
        return offer

    async def deactivate_offer(self, offer_id: str) -> Optional[Offer]:
        """Switch an offer off; its redemption history is kept."""
        return await self.update_offer(offer_id, is_active=False)

    async def validate(
        self,
        code: str,
        amount: Decimal,
        user_id: Optional[str],
        plan: Optional[str],
        now: Optional[datetime] = None,
    ) -> OfferValidation:
        """
        Check an offer against an order and compute its discount. Read-only.

        Returns:
            OfferValidation with discount and final amount, or the first failing reason
        """
        code = normalize_code(code)
        amount = to_money(amount)
        now = now or self._clock()

        async with self._session_factory() as session:
            offer = await self._find(session, code)
            usage = await self._user_usage(session, offer.id, user_id) if offer else 0

        rejection = check_offer(offer, amount=amount, plan=plan, user_usage_count=usage, now=now)
        if rejection is not None:
            logger.info(
                "Offer %s rejected for user %s: %s", code, user_id, rejection.value,
                extra={"offer_code": code, "user_id": user_id},
            )
            return OfferValidation(code=code, rejection=rejection)

        discount = compute_discount(
            offer.discount_type,
            offer.discount_value,
            amount,
            offer.max_discount_amount,
        )
        return OfferValidation(
            code=code,
            discount=discount,
            final_amount=to_money(amount - discount),
            offer=offer,
        )

    async def apply(
        self,
        code: str,
        user_id: str,
        now: Optional[datetime] = None,
        *,
        amount: Optional[Decimal] = None,
        plan: Optional[str] = None,
        payment_id: Optional[str] = None,
    ) -> OfferApplication:
        """
        Redeem an offer for a completed order.

        The validation checks run again first. An omitted ``amount`` skips
        the minimum-amount check; an omitted ``plan`` only matches offers
        open to all plans. A ``payment_id`` can back one redemption only.
        """
        code = normalize_code(code)
        now = now or self._clock()
        amount = to_money(amount) if amount is not None else None

        async with self._session_factory() as session:
            offer = await self._find(session, code, for_update=True)
            usage = await self._user_usage(session, offer.id, user_id) if offer else 0
            rejection = check_offer(offer, amount=amount, plan=plan, user_usage_count=usage, now=now)
            if rejection is not None:
                return OfferApplication(code=code, rejection=rejection)

            if payment_id is not None:
                recorded = await session.execute(
                    insert_for(session, OfferOrder)
                    .values(
                        id=str(uuid4()),
                        offer_id=offer.id,
                        user_id=user_id,
                        payment_id=payment_id,
                        amount=amount,
                        redeemed_at=now,
                    )
                    .on_conflict_do_nothing(index_elements=["payment_id"])
                )
                if recorded.rowcount == 0:
                    await session.rollback()
                    return OfferApplication(code=code, rejection=OfferRejection.PAYMENT_ALREADY_REDEEMED)

            counted = await session.execute(
                update(Offer)
                .where(
                    Offer.id == offer.id,
                    Offer.is_active.is_(True),
                    or_(Offer.usage_limit.is_(None), Offer.used_count < Offer.usage_limit),
                )
                .values(used_count=Offer.used_count + 1, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            if counted.rowcount == 0:
                await session.rollback()
                return OfferApplication(code=code, rejection=OfferRejection.USAGE_LIMIT_EXCEEDED)

            stmt = insert_for(session, OfferRedemption).values(
                id=str(uuid4()),
                offer_id=offer.id,
                user_id=user_id,
                usage_count=1,
                used_at=now,
                payment_id=payment_id,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["offer_id", "user_id"],
                set_={
                    "usage_count": OfferRedemption.usage_count + 1,
                    "used_at": stmt.excluded.used_at,
                    "payment_id": func.coalesce(stmt.excluded.payment_id, OfferRedemption.payment_id),
                },
                where=OfferRedemption.usage_count < offer.per_user_limit,
            )
            redeemed = await session.execute(stmt)
            if redeemed.rowcount == 0:
                await session.rollback()
                return OfferApplication(code=code, rejection=OfferRejection.PER_USER_LIMIT_REACHED)

            used_count = await session.scalar(select(Offer.used_count).where(Offer.id == offer.id))
            user_usage = await self._user_usage(session, offer.id, user_id)
            await session.commit()

        logger.info(
            "Offer %s redeemed by user %s (%d total)", code, user_id, used_count,
            extra={"offer_code": code, "user_id": user_id},
        )
        return OfferApplication(
            code=code,
            used_count=used_count,
            user_usage_count=user_usage,
        )

    async def active_offers(self, now: Optional[datetime] = None) -> list[Offer]:
        """Offers that are switched on and inside their date window."""
        now = now or self._clock()
        async with self._session_factory() as session:
            result = await session.scalars(
                select(Offer)
                .where(
                    Offer.is_active.is_(True),
                    Offer.start_date <= now,
                    Offer.end_date >= now,
                )
                .order_by(Offer.end_date.asc())
            )
            return list(result.all())
