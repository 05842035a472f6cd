from sqlalchemy import select

from app.db import get_sessionmaker, init_engine
from app.models.api_key import ApiKey
from app.models.user import User, UserRole
from app.utils.apikey import gen_key


def main() -> None:
    # Engine and SessionLocal come from app.config.get_settings
    init_engine()
    db = get_sessionmaker()()

    try:
        admin = db.scalars(select(User).where(User.role == UserRole.ADMIN).limit(1)).first()
        if admin is None:
            admin = User(username="admin", email="admin@example.com", role=UserRole.ADMIN)
            db.add(admin)
            db.flush()

        raw_token, prefix, key_hash = gen_key()
        api_key = ApiKey(
            name=f"dev-admin-{prefix}",
            prefix=prefix,
            key_hash=key_hash,
            user_id=admin.id,
            is_active=True,
        )
        db.add(api_key)
        db.commit()
        db.refresh(api_key)

        print("==========================================")
        print("Admin API key created")
        print("Use this key in your Authorization header:")
        print(f"    Authorization: Bearer {raw_token}")
        print(f"(DB id: {api_key.id}, user: {admin.username})")
        print("==========================================")
    finally:
        db.close()


if __name__ == "__main__":
    main()
