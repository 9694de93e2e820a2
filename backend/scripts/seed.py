"""Seed script: creates an import admin, a sample audit, entities and the default mapping templates.

Idempotent: checks for existing records before inserting.
Run: python scripts/seed.py
"""
import asyncio
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.seed import seed_mapping_templates
from app.core.security import create_access_token
from app.db.session import AsyncSessionLocal
from app.models.audit import Audit, Entity
from app.models.user import User


# ─── Upsert helpers ───────────────────────────────────────────────────────────

async def _upsert_user(db: AsyncSession, email: str, name: str, role: str) -> User:
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalars().first()
    if user:
        print(f"  [skip] User {email}")
        return user
    user = User(email=email, name=name, role=role, is_active=True)
    db.add(user)
    await db.flush()
    print(f"  [new]  User {email} ({role})")
    return user


async def _upsert_entity(db: AsyncSession, code: str, name: str) -> Entity:
    result = await db.execute(select(Entity).where(Entity.code == code))
    entity = result.scalars().first()
    if entity:
        print(f"  [skip] Entity {code}")
        return entity
    entity = Entity(code=code, name=name, is_active=True)
    db.add(entity)
    await db.flush()
    print(f"  [new]  Entity {code} ({name})")
    return entity


async def _upsert_audit(db: AsyncSession, title: str, audit_type: str) -> Audit:
    result = await db.execute(select(Audit).where(Audit.title == title))
    audit = result.scalars().first()
    if audit:
        print(f"  [skip] Audit {title}")
        return audit
    audit = Audit(title=title, audit_type=audit_type)
    db.add(audit)
    await db.flush()
    print(f"  [new]  Audit {title} ({audit.id})")
    return audit


# ─── Main ─────────────────────────────────────────────────────────────────────

async def main() -> None:
    async with AsyncSessionLocal() as db:
        print("Users")
        admin = await _upsert_user(db, "admin@example.com", "Audit Admin", "AUDIT_ADMIN")
        await _upsert_user(db, "sysadmin@example.com", "System Admin", "SYSTEM_ADMIN")
        await _upsert_user(db, "auditor@example.com", "Field Auditor", "AUDITOR")

        print("Entities")
        await _upsert_entity(db, "FIN", "Finance")
        await _upsert_entity(db, "IT", "Information Technology")
        await _upsert_entity(db, "OPS", "Operations")

        print("Audits")
        audit = await _upsert_audit(db, "ISO 27001 Surveillance 2026", "ISO")
        await db.commit()

        print("Mapping templates")
        await seed_mapping_templates(db)

        print(f"\nAudit id for uploads: {audit.id}")
        print(f"Access token for {admin.email}:\n{create_access_token(str(admin.id), admin.role)}")


if __name__ == "__main__":
    asyncio.run(main())
