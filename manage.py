import click
from campusbites import create_app, db, socketio
from config import DevelopmentConfig

app = create_app(DevelopmentConfig)


@app.cli.command('init-db')
def init_db():
    """Create database tables"""
    db.create_all()
    print("Database tables created!")


@app.cli.command('backfill-orders')
def backfill_orders():
    """Issue missing pickup tokens and QR codes on existing orders"""
    from campusbites.services.order_backfill import backfill_all

    updated = backfill_all(app.order_service)
    print(f"Backfilled {updated} order(s)")


@app.cli.command('approve-staff')
@click.argument('email')
def approve_staff(email):
    """Approve a pending staff account by email"""
    from campusbites.models.models import Staff

    staff = Staff.query.filter_by(email=email.strip().lower()).first()
    if not staff:
        raise click.ClickException(f"No staff account for {email}")

    staff.status = 'Approved'
    db.session.commit()
    print(f"Approved {staff.email} for canteen {staff.can_id}")


if __name__ == '__main__':
    socketio.run(app)
