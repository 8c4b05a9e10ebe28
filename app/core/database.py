from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from app.core.config import settings

# 建立非同步引擎
engine = create_async_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True, # 每次從連線池取連線前，先 PING 一次，確保連線有效
    echo=settings.SQL_ECHO,
)

# 建立非同步 Session
AsyncSessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# 建立 ORM Model 基底類別
Base = declarative_base()

# (重要) 取得 DB Session 的 Dependency
# 每個 request 一個 session = 一個 unit of work
async def get_db() -> AsyncSession:
    """FastAPI Dependency: 取得非同步資料庫 session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()

async def commit_or_rollback(db: AsyncSession) -> None:
    """
    提交目前的 unit of work。
    版本衝突 (另一個請求先更新了同一筆資料) 轉成 409，其餘錯誤原樣往上拋；
    兩種情況都先 rollback，不留下部分寫入。
    """
    # 延遲匯入，避免 core 模組之間循環依賴
    from sqlalchemy.orm.exc import StaleDataError
    from app.core.exceptions import ConcurrentModification

    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        raise ConcurrentModification()
    except Exception:
        await db.rollback()
        raise
