"""
Запуск API сервера.
"""

import os
import uvicorn
from dotenv import load_dotenv

# Загружаем переменные окружения
load_dotenv()


def run_api_server():
    """Запускает FastAPI сервер."""
    from zhiku.app.config import settings

    host = os.getenv("HOST", settings.HOST)
    port = int(os.getenv("PORT", settings.PORT))

    print("=" * 50)
    print(f"  {settings.APP_NAME} - API Server")
    print("=" * 50)
    print()
    print(f"[INFO] Starting API server on http://{host}:{port}")
    print(f"[INFO] Docs: http://{host}:{port}/docs")
    print(f"[INFO] Payment mode: {settings.PAYMENT_MODE}")
    print()

    uvicorn.run(
        "zhiku.app.main:app",
        host=host,
        port=port,
        reload=settings.DEBUG,
    )


if __name__ == "__main__":
    try:
        run_api_server()
    except KeyboardInterrupt:
        print("\n[INFO] Shutting down...")
    finally:
        print("[INFO] Stopped")
