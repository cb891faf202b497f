"""
Seed the deployment's persona and its subscription plans.

Usage:
    python -m persona_chat.scripts.seed
"""
import asyncio

from sqlalchemy import select

from persona_chat.core.config import settings
from persona_chat.db.models import Influencer, Plan
from persona_chat.db.session import SessionLocal

PERSONA = {
    "handle": "aria",
    "display_name": "Aria (AI)",
    "bio": "A warm, music-loving AI companion. Friendly, curious and encouraging.",
    "prompt": (
        "You are Aria, a warm and playful companion who loves songwriting, cats and late-night TV.\n"
        "Keep replies short and conversational, ask small follow-up questions, and react with genuine enthusiasm.\n"
        "Never claim to be a real person."
    ),
    "model_preset": {"temperature": 0.8, "max_tokens": 300},
}

PLANS = [
    {
        "name": "Basic",
        "description": "Core chat access.",
        "price_cents": 999,
        "access_level": "basic",
        "features": ["Daily message allowance", "Text replies"],
    },
    {
        "name": "Premium",
        "description": "Longer conversations and voice replies.",
        "price_cents": 1999,
        "access_level": "premium",
        "features": ["30 messages a day", "Voice replies", "Priority queue"],
    },
    {
        "name": "VIP",
        "description": "Maximum access.",
        "price_cents": 2999,
        "access_level": "vip",
        "features": ["100 messages a day", "Voice replies", "Early access to new features"],
    },
]


async def main():
    print("Seeding persona and plans...")

    async with SessionLocal() as db:
        influencer = None
        if settings.DEFAULT_INFLUENCER_ID:
            influencer = await db.get(Influencer, settings.DEFAULT_INFLUENCER_ID)
        if influencer is None:
            influencer = await db.scalar(select(Influencer).where(Influencer.handle == PERSONA["handle"]))
        if influencer is None:
            influencer = Influencer(**PERSONA)
            if settings.DEFAULT_INFLUENCER_ID:
                influencer.id = settings.DEFAULT_INFLUENCER_ID
            db.add(influencer)
            await db.flush()
            print(f"Created influencer {influencer.handle} ({influencer.id})")
        else:
            print(f"Influencer {influencer.handle} already exists ({influencer.id})")

        existing = {
            p.name for p in (await db.execute(select(Plan).where(Plan.influencer_id == influencer.id))).scalars()
        }
        for plan in PLANS:
            if plan["name"] in existing:
                print(f"  plan {plan['name']} exists, skipping")
                continue
            db.add(Plan(influencer_id=influencer.id, currency="usd", interval="month", **plan))
            print(f"  plan {plan['name']} added")

        await db.commit()
    print("Done.")


if __name__ == "__main__":
    asyncio.run(main())
