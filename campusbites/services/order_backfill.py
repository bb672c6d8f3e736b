"""
Migration-on-read for orders created before pickup tokens existed.

Orders written by older flows may lack ``order_date``, ``daily_token``,
``pickup_token`` or ``qr_token``. They must all be present before an order
can be marked Ready, so the lifecycle engine calls :func:`backfill_order`
first. Only missing fields are filled; an order that is already complete
is returned untouched, so repeated calls never mint new tokens.

Once ``manage.py backfill-orders`` has been run against every deployment
this module can be deleted.
"""
from datetime import timezone
from zoneinfo import ZoneInfo

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from campusbites import db
from campusbites.errors import Exhausted
from campusbites.models.models import Order
from campusbites.services.tokens import generate_daily_token, generate_pickup_token


def local_date_of(moment, timezone_name):
    """Canteen-local calendar day of a naive UTC datetime."""
    return moment.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(timezone_name)).date()


def missing_fields(order):
    return [name for name in ('order_date', 'daily_token', 'pickup_token', 'qr_token')
            if not getattr(order, name)]


def backfill_order(order, build_qr_token, today, timezone_name='UTC', attempts=12):
    """Populate missing pickup fields on ``order`` and return it refreshed.

    ``build_qr_token(order_id, daily_token, can_id, order_date, pickup_token)``
    produces the qrToken in the configured format. Each write is conditional
    on the fields still being empty, so a concurrent backfill of the same
    order wins or loses cleanly instead of overwriting tokens.
    """
    for attempt in range(attempts):
        missing = missing_fields(order)
        if not missing:
            return order

        if order.order_date:
            order_date = order.order_date
        elif order.created_at:
            order_date = local_date_of(order.created_at, timezone_name)
        else:
            order_date = today

        daily_token = order.daily_token or generate_daily_token(order.can_id, order_date)
        pickup_token = order.pickup_token or generate_pickup_token()
        qr_token = order.qr_token or build_qr_token(
            order.order_id, daily_token, order.can_id, order_date, pickup_token
        )
        values = {
            'order_date': order_date,
            'daily_token': daily_token,
            'pickup_token': pickup_token,
            'qr_token': qr_token
        }

        conditions = [Order.id == order.id]
        conditions.extend(getattr(Order, name).is_(None) for name in missing)

        try:
            result = db.session.execute(
                update(Order)
                .where(*conditions)
                .values(**{name: values[name] for name in missing})
                .execution_options(synchronize_session=False)
            )
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            current_app.logger.info(f"Token collision backfilling {order.order_id}, retrying: {e.orig}")
            db.session.refresh(order)
            continue

        db.session.refresh(order)
        if result.rowcount == 1:
            current_app.logger.info(f"Backfilled {', '.join(missing)} on order {order.order_id}")
            return order

    if missing_fields(order):
        raise Exhausted(f'Unable to backfill pickup tokens for order {order.order_id}')
    return order


def backfill_all(order_service, batch_size=200):
    """Backfill every incomplete order. Returns the number of orders updated."""
    updated = 0
    last_id = 0
    while True:
        batch = (
            Order.query
            .filter(Order.id > last_id)
            .filter(db.or_(Order.order_date.is_(None), Order.daily_token.is_(None),
                           Order.pickup_token.is_(None), Order.qr_token.is_(None)))
            .order_by(Order.id)
            .limit(batch_size)
            .all()
        )
        if not batch:
            return updated

        for order in batch:
            order_service.backfill(order)
            updated += 1
            last_id = order.id
