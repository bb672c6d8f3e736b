import os
from campusbites import create_app, db
from config import DevelopmentConfig, ProductionConfig


def setup_database():
    """Setup database based on environment"""
    env = os.environ.get('FLASK_ENV', 'development')

    if env == 'production':
        app = create_app(ProductionConfig)
        print("Setting up production database...")
    else:
        app = create_app(DevelopmentConfig)
        print("Setting up development database...")

    with app.app_context():
        try:
            # Create all tables
            db.create_all()
            print("Database tables created successfully!")

            # Create a demo canteen for local testing
            from campusbites.models.models import Canteen, Food, Staff, Student
            from campusbites.services.tokens import generate_canteen_id

            if not Canteen.query.first():
                print("Creating sample data...")

                canteen = Canteen(
                    can_id=generate_canteen_id(),
                    college_name='Demo College',
                    email='admin@demo-college.edu'
                )
                canteen.set_password('admin12345')
                db.session.add(canteen)
                db.session.commit()  # Commit canteen first so foreign keys resolve

                student = Student(
                    can_id=canteen.can_id,
                    name='Test Student',
                    class_semester='CSE S4',
                    mobile='9876543210',
                    admission_number='ADM001',
                    email='student@demo-college.edu'
                )
                student.set_password('student12345')

                staff = Staff(
                    name='Counter Staff',
                    email='staff@demo-college.edu',
                    can_id=canteen.can_id,
                    status='Approved'
                )
                staff.set_password('staff12345')

                foods = [
                    Food(can_id=canteen.can_id, name='Masala Dosa', price=50, category='food'),
                    Food(can_id=canteen.can_id, name='Veg Puff', price=20, category='snack'),
                    Food(can_id=canteen.can_id, name='Filter Coffee', price=15, category='drink'),
                ]

                db.session.add_all([student, staff, *foods])
                db.session.commit()
                print(f"Sample data created! canID: {canteen.can_id}")
            else:
                print("Sample data already exists.")
        except Exception as e:
            print(f"Error setting up database: {e}")
            db.session.rollback()


if __name__ == '__main__':
    setup_database()
