import sys
import os
import asyncio

# Add parent dir to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from services.credential_store import CredentialStore


def mask_key(secret):
    if not secret or len(secret) <= 12:
        return "***"
    return f"{secret[:6]}...{secret[-4:]}"


async def list_credentials(session_maker, limit=20):
    """Newest credential records as printable rows; provider secrets are masked."""
    async with session_maker() as session:
        records = await CredentialStore(session).list_recent(limit)
    return [
        {
            "user_id": record.user_id,
            "display_name": record.display_name,
            "key": mask_key(record.provider_key),
            "key_id": record.provider_key_id,
            "remaining_credits": float(record.remaining_credits),
            "total_credits": float(record.total_credits),
            "created_at": record.created_at.isoformat() if record.created_at else None,
        }
        for record in records
    ]


async def main():
    from database import async_session_maker, engine

    limit = 20
    if len(sys.argv) > 1:
        try:
            limit = int(sys.argv[1])
        except ValueError:
            print("Usage: python list_credentials.py [LIMIT]")
            sys.exit(1)

    print(f"🔍 Listing up to {limit} most recent credentials...")
    try:
        rows = await list_credentials(async_session_maker, limit)
        if not rows:
            print("⚠️ No credentials stored yet")
            return

        for row in rows:
            print(
                f"   {row['user_id']} ({row['display_name'] or '-'}) key={row['key']} "
                f"credits={row['remaining_credits']:.6f}/{row['total_credits']:.6f} created={row['created_at']}"
            )
        print(f"\n✅ {len(rows)} credential(s) listed")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
