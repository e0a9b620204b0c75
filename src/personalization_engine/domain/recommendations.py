"""Personalized content generation.

Pure functions deriving recommendations, offers and content suggestions
from a profile, plus the personalization bag attached to outgoing emails.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import Field

from personalization_engine.domain.models import CamelModel

if TYPE_CHECKING:
    from personalization_engine.domain.models import UserProfile

VIP_SEGMENT = "vip-customers"
FALLBACK_FIRST_NAME = "Valued Customer"


class Recommendation(CamelModel):
    type: str
    title: str
    description: str
    priority: int = 0


class Offer(CamelModel):
    type: str
    title: str
    description: str
    value: int | str
    code: str | None = None


class ContentSuggestion(CamelModel):
    type: str
    title: str
    url: str
    relevance: str = "medium"


class PersonalizedContent(CamelModel):
    recommendations: list[Recommendation] = Field(default_factory=list)
    offers: list[Offer] = Field(default_factory=list)
    content: list[ContentSuggestion] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Generators
# ---------------------------------------------------------------------------


def recommendations_for(profile: UserProfile) -> list[Recommendation]:
    """Service and product recommendations, highest priority first."""
    recommendations: list[Recommendation] = []
    if profile.preferences.hair_type == "curly":
        recommendations.append(
            Recommendation(
                type="service",
                title="Curly Hair Specialist Treatment",
                description="Perfect for your curly hair type",
                priority=9,
            )
        )
    if profile.behavior.purchases:
        recommendations.append(
            Recommendation(
                type="product",
                title="Recommended Hair Care Products",
                description="Based on your previous purchases",
                priority=7,
            )
        )
    return sorted(recommendations, key=lambda item: -item.priority)


def offers_for(profile: UserProfile) -> list[Offer]:
    offers: list[Offer] = []
    if VIP_SEGMENT in profile.segments:
        offers.append(
            Offer(
                type="discount",
                title="VIP 20% Off",
                description="Exclusive discount for our valued customers",
                value=20,
                code="VIP20",
            )
        )
    if not profile.behavior.bookings:
        offers.append(
            Offer(
                type="service",
                title="Free Consultation",
                description="Complimentary consultation with your first booking",
                value="free",
            )
        )
    return offers


def content_for(profile: UserProfile) -> list[ContentSuggestion]:
    content: list[ContentSuggestion] = []
    if "damage" in profile.preferences.concerns:
        content.append(
            ContentSuggestion(
                type="article",
                title="Hair Repair and Recovery Tips",
                url="/blog/hair-repair-guide",
                relevance="high",
            )
        )
    return content


def build_personalized_content(profile: UserProfile) -> PersonalizedContent:
    return PersonalizedContent(
        recommendations=recommendations_for(profile),
        offers=offers_for(profile),
        content=content_for(profile),
    )


# ---------------------------------------------------------------------------
# Email personalization
# ---------------------------------------------------------------------------


def personalized_subject(profile: UserProfile, subject: str) -> str:
    """Prefix the subject with the first name, or a VIP marker."""
    if profile.first_name:
        return f"{profile.first_name}, {subject.lower()}"
    if VIP_SEGMENT in profile.segments:
        return f"VIP Exclusive: {subject}"
    return subject


def personalize_email(profile: UserProfile, base: dict[str, Any]) -> dict[str, Any]:
    """Merge profile-derived fields into an email's template data."""
    personalization = dict(base)
    personalization["firstName"] = profile.first_name or FALLBACK_FIRST_NAME
    personalization["preferences"] = profile.preferences.model_dump(by_alias=True)
    personalization["segments"] = sorted(profile.segments)
    personalization["lifetimeValue"] = profile.lifetime_value
    subject = base.get("subject")
    if isinstance(subject, str) and subject:
        personalization["personalizedSubject"] = personalized_subject(profile, subject)
    personalization["recommendations"] = [
        item.model_dump(by_alias=True) for item in recommendations_for(profile)
    ]
    personalization["offers"] = [item.model_dump(by_alias=True) for item in offers_for(profile)]
    return personalization
