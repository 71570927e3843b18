# epic_notes/models/__init__.py

from epic_notes.models.user import Role, User, UserImage  # noqa: F401
from epic_notes.models.session import UserSession  # noqa: F401
from epic_notes.models.verification import Verification  # noqa: F401
from epic_notes.models.connection import Connection  # noqa: F401
