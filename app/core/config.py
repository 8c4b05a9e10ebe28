# app/core/config.py
# 應用程式設定 (例如資料庫連線字串、JWT 秘鑰、金流設定等)
from decimal import Decimal
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # 資料庫設定
    DATABASE_URL: str
    # (可選) 設為 True 會在 console 印出 SQL 語句
    SQL_ECHO: bool = False
    # JWT 設定 (由外部認證服務簽發，我們只負責驗證)
    JWT_SECRET_KEY: str
    # JWT 演算法
    JWT_ALGORITHM: str = "HS256"

    # --- 金流 (Stripe) ---
    STRIPE_SECRET_KEY: str = ""
    PAYMENT_CURRENCY: str = "usd"
    # 平台手續費率：所有計算路徑 (託管、前端試算) 都只讀這一個值
    PLATFORM_FEE_RATE: Decimal = Decimal("0.10")
    # 金流暫時性錯誤的重試次數 (使用同一組 idempotency key)
    PROCESSOR_MAX_RETRIES: int = 3
    PROCESSOR_RETRY_DELAY_SECONDS: float = 0.5

    # --- 爭議證據上傳 ---
    EVIDENCE_UPLOAD_DIR: str = "static/uploads/evidence"
    EVIDENCE_URL_PREFIX: str = "/static/uploads/evidence/"

    # 環境變數檔案 
    class Config:
        env_file = ".env"

# 建立設定實例
settings = Settings()
