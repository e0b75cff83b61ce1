from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import select

from app.auth import DEMO_ACCOUNTS
from app.db import SessionLocal, engine
from app.models import AuthUser, Base, Customer, Medicine, Profile, Supplier
from app.security.passwords import hash_password

DEMO_MEDICINES = (
    ('Paracetamol 500mg', 'Acetaminophen', 'Analgesics', 'Generic Labs', 120, Decimal('2.50'), 365),
    ('Amoxicillin 250mg', 'Amoxicillin', 'Antibiotics', 'MediCorp', 8, Decimal('8.75'), 180),
    ('Ibuprofen 400mg', 'Ibuprofen', 'Analgesics', 'Generic Labs', 45, Decimal('3.20'), 5),
    ('Cetirizine 10mg', 'Cetirizine', 'Antihistamines', 'AllerFree', 60, Decimal('4.10'), 25),
    ('Metformin 500mg', 'Metformin', 'Antidiabetics', 'GlucoPharm', 0, Decimal('6.00'), 400),
)


def seed() -> None:
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        for account in DEMO_ACCOUNTS:
            user = db.execute(select(AuthUser).where(AuthUser.email == account.email)).scalar_one_or_none()
            if not user:
                user = AuthUser(email=account.email, password_hash=hash_password(account.password), active=True)
                db.add(user)
                db.flush()
            if db.get(Profile, user.id) is None:
                db.add(Profile(id=user.id, full_name=account.full_name, role=account.role.value))

        if not db.execute(select(Medicine.id).limit(1)).first():
            today = date.today()
            for name, generic, category, manufacturer, stock, price, shelf_days in DEMO_MEDICINES:
                db.add(
                    Medicine(
                        name=name,
                        generic_name=generic,
                        category=category,
                        manufacturer=manufacturer,
                        stock_quantity=stock,
                        reorder_level=10,
                        unit_price=price,
                        expiry_date=today + timedelta(days=shelf_days),
                    )
                )

        if not db.execute(select(Customer.id).limit(1)).first():
            db.add(Customer(full_name='Jane Doe', email='jane@example.com', phone='555-0100'))
        if not db.execute(select(Supplier.id).limit(1)).first():
            db.add(Supplier(company_name='MediCorp Distribution', contact_person='Sam Lee', email='orders@medicorp.example'))

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
