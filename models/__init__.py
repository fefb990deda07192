"""
This module centralizes the imports for all models so that Alembic and the
ORM see every table and foreign key of the service.
"""

# Import all models here

from src.session.models import UserRefreshToken as UserRefreshToken
from src.user.models import User as User
from src.user.models import UserSetting as UserSetting
