import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

# Force-load .env before settings are read
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

from autopay_bridge.config import get_settings  # noqa: E402
from autopay_bridge.database import Base, engine  # noqa: E402
from autopay_bridge.routes import router  # noqa: E402
from autopay_bridge.webhooks import router as webhooks_router  # noqa: E402

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    handlers=[logging.StreamHandler()],
)

app = FastAPI(title="Razorpay Autopay Bridge")

app.include_router(webhooks_router)
app.include_router(router)

Base.metadata.create_all(bind=engine)


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "autopay-bridge"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
