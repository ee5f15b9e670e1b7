"""
Test helpers: sample data, a deterministic AI provider and tenant builders.

Usage:
    from tests.helpers import make_tenant, make_user
"""
import inspect
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from confapp.features.ai.providers import AIProvider, ProviderName, ngram_similarity, similarity_result
from confapp.features.organizations import service as organizations
from confapp.features.organizations.models import Conference, ConferenceSettings, Organization, Track
from confapp.features.permissions.claims import ClaimSet
from confapp.features.permissions.roles import Role
from confapp.features.users.auth import issue_token_for_user
from confapp.features.users.models import User


ROOT_EMAIL = "root@example.com"
WEBHOOK_SECRET = "test-webhook-secret"

PAPER_TEXT = (
    "Scalable Consensus for Edge Devices\n"
    "We study consensus protocols for constrained edge devices and show a new "
    "leader election scheme that tolerates partitions while keeping message "
    "complexity linear in the number of participants.\n"
    "References\n[1] Lamport. Paxos made simple."
)

PAPER_METADATA = {
    "title": "Scalable Consensus for Edge Devices",
    "abstract": "We study consensus protocols for constrained edge devices and show a new leader election scheme.",
    "keywords": ["consensus", "edge"],
    "authors": [{"name": "Ada Example", "affiliation": "Example University", "corresponding": True}],
}


class FakeProvider(AIProvider):
    """Deterministic provider; ``error`` makes summaries fail, ``observe`` runs on each summary call."""

    name = ProviderName.GEMINI

    def __init__(self):
        self.error: Optional[Exception] = None
        self.observe = None
        self.summary_calls = 0
        self.corpus_sizes: list[int] = []

    async def generate_summary(self, text: str, model: Optional[str] = None) -> dict[str, Any]:
        self.summary_calls += 1
        if self.observe:
            result = self.observe()
            if inspect.isawaitable(result):
                await result
        if self.error:
            raise self.error
        return {"text": "A short summary.", "word_count": 3, "provider_meta": {"provider": "fake"}}

    async def compute_similarity(self, text, corpus, threshold_pct=20, exclude_references=True, model=None):
        self.corpus_sizes.append(len(corpus))
        return similarity_result(ngram_similarity(text, corpus), threshold_pct, exclude_references)


@dataclass
class Tenant:
    org: Organization
    conference: Conference
    track: Track
    settings: ConferenceSettings


async def make_user(db: AsyncSession, email: str, name: str = "Test User") -> User:
    user = User(email=email, name=name)
    db.add(user)
    await db.flush()
    return user


async def make_tenant(db: AsyncSession, slug: str = "acm", **settings) -> Tenant:
    """Org with one ACTIVE conference and one track; ``settings`` override conference defaults."""
    org = await organizations.create_organization(db, f"Society {slug}", slug=slug)
    conference = await organizations.create_conference(
        db, org.id, {"name": f"{slug.upper()} Conference", "settings": settings}
    )
    track = await organizations.create_track(db, conference, "Main Track", "MAIN")
    conference_settings = await organizations.get_settings_or_raise(db, org.id, conference.id)
    await db.commit()
    return Tenant(org=org, conference=conference, track=track, settings=conference_settings)


def super_admin_claims(user_id: str = "root") -> ClaimSet:
    return ClaimSet(user_id=user_id, email=ROOT_EMAIL, global_roles=frozenset({Role.SUPER_ADMIN}))


async def auth_headers(db: AsyncSession, user: User, org_id: Optional[str] = None) -> dict[str, str]:
    """Bearer token with the user's current memberships, plus the tenant header."""
    token = await issue_token_for_user(db, user)
    await db.commit()
    headers = {"Authorization": f"Bearer {token}"}
    if org_id:
        headers["x-org-id"] = org_id
    return headers
