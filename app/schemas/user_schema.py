# app/schemas/user_schema.py
from pydantic import BaseModel

# Token 內的資料 (由外部認證服務簽發)
class TokenData(BaseModel):
    user_id: str
    role: str
