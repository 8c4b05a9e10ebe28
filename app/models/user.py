# models/user.py
from sqlalchemy import Column, String, Boolean, Enum, CHAR
from app.core.database import Base
import enum

# 對應 SQL 中的 ENUM 型別
class UserRoleEnum(str, enum.Enum):
    client = "client"
    freelancer = "freelancer"
    admin = "admin"

class User(Base):
    """
    使用者 (由外部認證服務維護，本服務只讀取身分與角色)
    """
    __tablename__ = "users"

    # 基本欄位
    user_id = Column(CHAR(36), primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(100), nullable=True)
    role = Column(Enum(UserRoleEnum, values_callable=lambda obj: [e.value for e in obj]), nullable=False)
    is_active = Column(Boolean, default=True)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRoleEnum.admin
