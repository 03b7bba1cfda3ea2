"""Simple server runner that keeps uvicorn alive."""
import uvicorn

from storebot.core.config import settings

if __name__ == "__main__":
    print("=" * 50)
    print(f"  Starting {settings.BOT_NAME} Backend")
    print("=" * 50)
    # uvicorn handles SIGINT/SIGTERM and runs the lifespan shutdown
    uvicorn.run(
        "storebot.main:app",
        host="127.0.0.1",
        port=8000,
        log_level="info",
    )
