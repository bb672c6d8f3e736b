from campusbites import db
from datetime import datetime
from werkzeug.security import generate_password_hash, check_password_hash


ORDER_STATUSES = ('Preparing', 'Ready', 'Delivered')
PAYMENT_STATUSES = ('created', 'authorized', 'captured', 'failed')
STAFF_STATUSES = ('Pending', 'Approved', 'Declined')
FOOD_CATEGORIES = ('food', 'drink', 'snack')

# Payment.lock_state values
UNCLAIMED = 'unclaimed'
LOCKED = 'locked'
RESOLVED = 'resolved'


def format_date(value):
    return value.strftime('%Y-%m-%d') if value else None


def format_datetime(value):
    return value.isoformat() if value else None


class PasswordMixin:
    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)


class Canteen(PasswordMixin, db.Model):
    __tablename__ = 'canteens'

    id = db.Column(db.Integer, primary_key=True)
    can_id = db.Column(db.String(12), unique=True, nullable=False)
    college_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(254), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    razorpay_key_id = db.Column(db.String(100))
    razorpay_key_secret = db.Column(db.String(100))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'canID': self.can_id,
            'adminId': self.id,
            'collegeName': self.college_name,
            'email': self.email,
            'paymentsConfigured': bool(self.razorpay_key_id and self.razorpay_key_secret),
            'createdAt': format_datetime(self.created_at)
        }


class Student(PasswordMixin, db.Model):
    __tablename__ = 'students'
    __table_args__ = (
        db.UniqueConstraint('can_id', 'admission_number', name='uq_students_admission_number'),
    )

    id = db.Column(db.Integer, primary_key=True)
    can_id = db.Column(db.String(12), db.ForeignKey('canteens.can_id'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    class_semester = db.Column(db.String(100), nullable=False)
    mobile = db.Column(db.String(10), unique=True, nullable=False)
    admission_number = db.Column(db.String(50), nullable=False)
    email = db.Column(db.String(254), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    banned = db.Column(db.Boolean, default=False, nullable=False)
    banned_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    orders = db.relationship('Order', backref='student', lazy=True)

    def set_banned(self, banned):
        # bannedAt is set iff banned
        self.banned = bool(banned)
        self.banned_at = datetime.utcnow() if self.banned else None

    def to_dict(self):
        return {
            '_id': self.id,
            'canID': self.can_id,
            'name': self.name,
            'classSemester': self.class_semester,
            'mobile': self.mobile,
            'email': self.email,
            'admissionNumber': self.admission_number,
            'banned': self.banned,
            'bannedAt': format_datetime(self.banned_at)
        }


class Staff(PasswordMixin, db.Model):
    __tablename__ = 'staff'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(254), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    can_id = db.Column(db.String(12), db.ForeignKey('canteens.can_id'), nullable=False, index=True)
    status = db.Column(db.String(10), default='Pending', nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def is_approved(self):
        return self.status == 'Approved'

    def to_dict(self):
        return {
            '_id': self.id,
            'name': self.name,
            'email': self.email,
            'canteenId': self.can_id,
            'status': self.status,
            'createdAt': format_datetime(self.created_at)
        }


class Food(db.Model):
    __tablename__ = 'foods'
    __table_args__ = (
        db.CheckConstraint('price >= 0', name='ck_foods_price_non_negative'),
    )

    id = db.Column(db.Integer, primary_key=True)
    can_id = db.Column(db.String(12), db.ForeignKey('canteens.can_id'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Float, nullable=False)
    in_stock = db.Column(db.Boolean, default=True, nullable=False)
    category = db.Column(db.String(10), default='food', nullable=False)  # food, drink, snack
    image_url = db.Column(db.String(500), default='')

    def to_dict(self):
        return {
            '_id': self.id,
            'canID': self.can_id,
            'name': self.name,
            'price': self.price,
            'inStock': self.in_stock,
            'category': self.category,
            'imageUrl': self.image_url or ''
        }


class Order(db.Model):
    __tablename__ = 'orders'
    __table_args__ = (
        db.UniqueConstraint('can_id', 'order_date', 'daily_token', name='uq_orders_daily_token'),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(40), unique=True, nullable=False)
    can_id = db.Column(db.String(12), db.ForeignKey('canteens.can_id'), nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id'), nullable=False, index=True)
    total = db.Column(db.Float, nullable=False)
    # Canteen-local calendar day the order was placed on
    order_date = db.Column(db.Date, index=True)
    daily_token = db.Column(db.String(4))
    pickup_token = db.Column(db.String(4), unique=True)
    qr_token = db.Column(db.Text)
    status = db.Column(db.String(10), default='Preparing', nullable=False)  # Preparing, Ready, Delivered
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = db.relationship('OrderItem', backref='order', lazy=True, cascade='all, delete-orphan',
                            order_by='OrderItem.position')

    @property
    def needs_backfill(self):
        return not (self.order_date and self.daily_token and self.pickup_token and self.qr_token)

    def to_dict(self):
        return {
            '_id': self.id,
            'orderID': self.order_id,
            'canID': self.can_id,
            'studentID': self.student_id,
            'items': [item.to_dict() for item in self.items],
            'total': self.total,
            'orderDate': format_date(self.order_date),
            'dailyToken': self.daily_token,
            'pickupToken': self.pickup_token,
            'qrToken': self.qr_token,
            'status': self.status,
            'createdAt': format_datetime(self.created_at),
            'updatedAt': format_datetime(self.updated_at)
        }


class OrderItem(db.Model):
    __tablename__ = 'order_items'
    __table_args__ = (
        db.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_pk = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    # Snapshot of the food at order time; foods may be edited or deleted later
    food_id = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(255), nullable=False)
    unit_price = db.Column(db.Float, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    def to_dict(self):
        return {
            'foodID': self.food_id,
            'name': self.name,
            'price': self.unit_price,
            'quantity': self.quantity
        }


class Payment(db.Model):
    __tablename__ = 'payments'
    __table_args__ = (
        db.UniqueConstraint('order_id', 'user_id', name='uq_payments_order_user'),
    )

    id = db.Column(db.Integer, primary_key=True)
    razorpay_order_id = db.Column(db.String(64), unique=True, nullable=False)
    # NULL rather than '' when absent so the unique index ignores it
    razorpay_payment_id = db.Column(db.String(64), unique=True)
    user_id = db.Column(db.Integer, db.ForeignKey('students.id'), nullable=False, index=True)
    can_id = db.Column(db.String(12), db.ForeignKey('canteens.can_id'), nullable=False, index=True)
    amount = db.Column(db.Integer, nullable=False)  # minor units (paise)
    currency = db.Column(db.String(3), nullable=False, default='INR')
    status = db.Column(db.String(10), nullable=False, default='created', index=True)
    paid_at = db.Column(db.DateTime)

    # Order resolution: unclaimed -> locked(lock_id) -> resolved(order_id)
    lock_state = db.Column(db.String(10), nullable=False, default=UNCLAIMED)
    lock_id = db.Column(db.String(64))
    locked_at = db.Column(db.DateTime)
    order_id = db.Column(db.String(40), index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'razorpay_order_id': self.razorpay_order_id,
            'razorpay_payment_id': self.razorpay_payment_id,
            'userId': self.user_id,
            'canID': self.can_id,
            'amount': self.amount,
            'currency': self.currency,
            'status': self.status,
            'paidAt': format_datetime(self.paid_at),
            'orderId': self.order_id if self.lock_state == RESOLVED else None
        }
