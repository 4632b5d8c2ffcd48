"""User profiles (the `profiles` record set) and admin flags."""
from typing import List, Optional
from .db import get_connection
from .schemas import Profile


def _row_to_profile(row) -> Profile:
    return Profile(
        user_id=row[0],
        email=row[1],
        full_name=row[2],
        is_admin=bool(row[3]),
        created_at=row[4],
    )


def ensure_profile(user_id: str, email: Optional[str] = None, full_name: Optional[str] = None) -> Profile:
    """
    Creates the profile for an identity the first time it is seen.
    Email and name are refreshed when given; the admin flag is never touched.
    """
    conn = get_connection()
    cur = conn.cursor()

    cur.execute("""
        INSERT INTO profiles (user_id, email, full_name)
        VALUES (?, ?, ?)
        ON CONFLICT(user_id)
        DO UPDATE SET
            email = COALESCE(excluded.email, profiles.email),
            full_name = COALESCE(excluded.full_name, profiles.full_name)
    """, (user_id, email, full_name))

    conn.commit()
    conn.close()

    return get_profile(user_id)


def get_profile(user_id: str) -> Optional[Profile]:
    conn = get_connection()
    cur = conn.cursor()

    cur.execute("""
        SELECT user_id, email, full_name, is_admin, created_at
        FROM profiles
        WHERE user_id = ?
    """, (user_id,))

    row = cur.fetchone()
    conn.close()
    return _row_to_profile(row) if row else None


def list_profiles() -> List[Profile]:
    """
    All profiles, newest first.
    """
    conn = get_connection()
    cur = conn.cursor()

    cur.execute("""
        SELECT user_id, email, full_name, is_admin, created_at
        FROM profiles
        ORDER BY created_at DESC, rowid DESC
    """)

    profiles = [_row_to_profile(row) for row in cur.fetchall()]
    conn.close()
    return profiles


def set_admin(user_id: str, is_admin: bool) -> bool:
    """
    Promotes or demotes a user.

    Returns:
        False if no profile exists for user_id
    """
    conn = get_connection()
    cur = conn.cursor()

    cur.execute("""
        UPDATE profiles SET is_admin = ?
        WHERE user_id = ?
    """, (int(is_admin), user_id))

    conn.commit()
    updated = cur.rowcount
    conn.close()
    return updated > 0


def count_profiles() -> int:
    conn = get_connection()
    cur = conn.cursor()
    cur.execute("SELECT COUNT(*) FROM profiles")
    count = cur.fetchone()[0]
    conn.close()
    return count
