from models import db
from models.user import Role
from security.rbac import ROLES

def seed_roles():
    """Insert any missing role rows; safe to call on every startup."""
    existing = {name for (name,) in db.session.query(Role.name).all()}
    missing = [name for name in ROLES if name not in existing]
    for name in missing:
        db.session.add(Role(name=name))
    if missing:
        db.session.commit()
    return missing
