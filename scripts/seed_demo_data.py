#!/usr/bin/env python3
"""
Fill an empty MailTrack database with demo departments, sections, users,
mail, referrals and comments. Every demo account uses the password
``password123``.

Faker comes with the ``demo`` extra: ``pip install -e ".[demo]"``.
"""

import random
from datetime import timedelta

from faker import Faker
from sqlalchemy import insert, select
from werkzeug.security import generate_password_hash

from mailtrack.database import create_schema, init_engine
from mailtrack.logging_config import setup_logging
from mailtrack.models import Direction, ReferralStatus, Role, utcnow
from mailtrack.repositories import new_id
from mailtrack.schema import comments, departments, mails, referrals, sections, users

# --------------------------------------------------------------------
# CONFIG
# --------------------------------------------------------------------
DEPARTMENTS = {
    "Finance": ["Accounts Payable", "Budget", "Payroll"],
    "Human Resources": ["Recruitment", "Training"],
    "Legal": ["Contracts", "Compliance"],
    "Operations": ["Logistics", "Facilities", "Procurement"],
}
NUM_MAILS = 120
REFERRALS_PER_MAIL = (0, 3)
COMMENTS_PER_REFERRAL = (0, 4)
DEMO_PASSWORD = "password123"

SUBJECT_TOPICS = [
    "budget", "contract renewal", "audit", "staffing", "procurement request",
    "policy update", "invoice", "training schedule", "facility maintenance",
]

# --------------------------------------------------------------------
# SETUP
# --------------------------------------------------------------------
fake = Faker()
random.seed(42)
Faker.seed(42)


# --------------------------------------------------------------------
# SEED FUNCTIONS
# --------------------------------------------------------------------
def seed_departments(conn):
    dept_ids, section_ids = {}, {}
    for dept_name, section_names in DEPARTMENTS.items():
        dept_id = new_id()
        conn.execute(insert(departments).values(id=dept_id, name=dept_name))
        dept_ids[dept_name] = dept_id
        for name in section_names:
            section_id = new_id()
            conn.execute(insert(sections).values(id=section_id, name=name, department_id=dept_id))
            section_ids[section_id] = dept_id
    return dept_ids, section_ids


def seed_users(conn, dept_ids, section_ids):
    password_hash = generate_password_hash(DEMO_PASSWORD)
    rows = [{
        "id": new_id(), "username": "admin", "password_hash": password_hash,
        "full_name": "System Administrator", "role": Role.ADMIN.value,
        "department_id": None, "section_id": None,
    }]
    for dept_name, dept_id in dept_ids.items():
        rows.append({
            "id": new_id(), "username": f"manager.{dept_name.split()[0].lower()}",
            "password_hash": password_hash, "full_name": fake.name(),
            "role": Role.MANAGER.value, "department_id": dept_id, "section_id": None,
        })
    for i, section_id in enumerate(section_ids, 1):
        rows.append({
            "id": new_id(), "username": f"head.{i:02d}", "password_hash": password_hash,
            "full_name": fake.name(), "role": Role.HEAD.value,
            "department_id": None, "section_id": section_id,
        })
    conn.execute(insert(users), rows)


def seed_mails(conn, dept_ids, uploader_ids, n=NUM_MAILS):
    dept_list = list(dept_ids.values())
    rows = []
    for i in range(n):
        direction = random.choice(list(Direction))
        dept = random.choice(dept_list)
        created = utcnow() - timedelta(days=random.randint(0, 365))
        rows.append({
            "id": new_id(),
            "reference_number": f"REF-{created.year}-{i + 1:05d}",
            "mail_date": created.date(),
            "subject": f"{random.choice(SUBJECT_TOPICS).capitalize()}: {fake.sentence(nb_words=6)}",
            "direction": direction.value,
            "from_department_id": dept if direction == Direction.INCOMING else None,
            "to_department_id": dept if direction == Direction.OUTGOING else None,
            "uploader_id": random.choice(uploader_ids),
            "created_at": created,
            "updated_at": created,
        })
    conn.execute(insert(mails), rows)
    return rows


def seed_referrals(conn, mail_rows, section_ids, head_by_section):
    for mail in mail_rows:
        lo, hi = REFERRALS_PER_MAIL
        for section_id in random.sample(list(section_ids), random.randint(lo, hi)):
            referral_id = new_id()
            status = random.choice(list(ReferralStatus))
            conn.execute(insert(referrals).values(
                id=referral_id, mail_id=mail["id"], section_id=section_id, status=status.value,
            ))
            author = head_by_section.get(section_id)
            if author is None or status == ReferralStatus.PENDING:
                continue
            lo_c, hi_c = COMMENTS_PER_REFERRAL
            for _ in range(random.randint(lo_c, hi_c)):
                conn.execute(insert(comments).values(
                    id=new_id(), referral_id=referral_id, user_id=author,
                    text=fake.sentence(nb_words=12),
                ))


# --------------------------------------------------------------------
# MAIN
# --------------------------------------------------------------------
def main():
    setup_logging()
    engine = init_engine()
    create_schema(engine)

    with engine.begin() as conn:
        print("Seeding departments and sections...")
        dept_ids, section_ids = seed_departments(conn)

        print("Seeding users...")
        seed_users(conn, dept_ids, section_ids)
        user_rows = conn.execute(select(users.c.id, users.c.role, users.c.section_id)).all()
        uploader_ids = [u.id for u in user_rows if u.role in (Role.ADMIN.value, Role.MANAGER.value)]
        head_by_section = {u.section_id: u.id for u in user_rows if u.role == Role.HEAD.value}

        print("Seeding mail...")
        mail_rows = seed_mails(conn, dept_ids, uploader_ids)

        print("Seeding referrals and comments...")
        seed_referrals(conn, mail_rows, section_ids, head_by_section)

        print(f"Done! Log in as 'admin' / '{DEMO_PASSWORD}'.")


if __name__ == "__main__":
    main()
