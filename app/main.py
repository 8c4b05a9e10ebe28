import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.routers import (
    order_router, payment_router, dispute_router, notification_router
)

# --- 匯入所有 Model 檔案 ---
# 都在應用程式啟動時被 SQLAlchemy 註冊。
from app.models import user
from app.models import gig
from app.models import order
from app.models import payment
from app.models import dispute
from app.models import notification


# 設定基礎日誌
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__) # 建立一個 logger 實例

app = FastAPI()

# --- 設定 CORS (跨來源資源共用) ---
# 允許所有來源 (在生產環境中應限制)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], # 允許所有來源 (或指定 'http://localhost:5173')
    allow_credentials=True,
    allow_methods=["*"], # 允許所有 HTTP 方法
    allow_headers=["*"], # 允許所有 HTTP 標頭
)

# --- 根路徑 ---
@app.get("/")
def read_root():
    return {"status": "success", "message": "Backend is running!"}

# --- 載入 API 路由 ---
app.include_router(order_router.router)
app.include_router(payment_router.router)
app.include_router(dispute_router.router)
app.include_router(notification_router.router)
