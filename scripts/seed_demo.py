"""
Seed script for a local demo tenant.

Creates (idempotently):
- A super admin user (first address in SUPER_ADMIN_EMAILS, or admin@example.com)
- A "Demo Society" organization with that user as ADMIN
- An ACTIVE conference with a free submission fee and one track

and prints an access token for the super admin. Credential checks live
upstream of this service, so this is also the way to get a first token.

Usage:
    python -m scripts.seed_demo
"""
import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from confapp.core import config
from confapp.core.database.engine import get_db, init_db
from confapp.features.organizations import service as organizations
from confapp.features.organizations.models import Conference, ConferenceStatus, Organization, Track
from confapp.features.users.auth import issue_token_for_user
from confapp.features.users.models import User
from confapp.utils import get_logger


log = get_logger(__name__)

DEMO_ORG_SLUG = "demo-society"
DEMO_CONFERENCE_SLUG = "demo-conf"


async def seed_admin(db: AsyncSession) -> User:
    email = config.SUPER_ADMIN_EMAILS[0] if config.SUPER_ADMIN_EMAILS else "admin@example.com"
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user:
        log.debug(f"User '{email}' already exists, skipping")
        return user

    user = User(email=email, name="Demo Admin")
    db.add(user)
    await db.flush()
    log.info(f"Created user: {email}")
    return user


async def seed_tenant(db: AsyncSession, admin: User) -> tuple[Organization, Conference, Track]:
    result = await db.execute(select(Organization).where(Organization.slug == DEMO_ORG_SLUG))
    org = result.scalar_one_or_none()
    if org is None:
        org = await organizations.create_organization(
            db, "Demo Society", slug=DEMO_ORG_SLUG, admin_user_id=admin.id
        )

    result = await db.execute(
        select(Conference).where(Conference.org_id == org.id, Conference.slug == DEMO_CONFERENCE_SLUG)
    )
    conference = result.scalar_one_or_none()
    if conference is None:
        conference = await organizations.create_conference(db, org.id, {
            "name": "Demo Conference",
            "slug": DEMO_CONFERENCE_SLUG,
            "status": ConferenceStatus.ACTIVE,
            "settings": {"amount_cents": 0, "ai_consent_required": True},
        })

    result = await db.execute(select(Track).where(Track.conference_id == conference.id, Track.code == "MAIN"))
    track = result.scalar_one_or_none()
    if track is None:
        track = await organizations.create_track(db, conference, "Main Track", "MAIN")

    return org, conference, track


async def main():
    """Seed the demo tenant and print the admin token."""
    log.info("Starting demo seeding...")

    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        try:
            admin = await seed_admin(db)
            org, conference, track = await seed_tenant(db, admin)
            token = await issue_token_for_user(db, admin)
            await db.commit()

            log.info("Demo seeding completed successfully!")
            log.info(f"  org_id:        {org.id}")
            log.info(f"  conference_id: {conference.id}")
            log.info(f"  track_id:      {track.id}")
            log.info(f"  token:         {token}")
        except Exception as e:
            log.error(f"Error seeding demo data: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
