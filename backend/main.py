# backend/main.py
import os
from dotenv import load_dotenv
load_dotenv()

from backend.app import create_app

app = create_app()


def run(host: str = "0.0.0.0", port: int | None = None):
    import uvicorn
    uvicorn.run(app, host=host, port=port or int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    run()
