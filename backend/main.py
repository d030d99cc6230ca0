import os

import uvicorn

if __name__ == "__main__":
    # 开发环境默认热重载
    is_dev = os.getenv("ENV", "development") == "development"

    uvicorn.run(
        "shop.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        reload=is_dev,
        log_level="info"
    )
