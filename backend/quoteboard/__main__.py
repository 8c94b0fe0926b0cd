from __future__ import annotations
import uvicorn
from quoteboard.config import settings

def main():
    uvicorn.run("quoteboard.main:app", host=settings.api_host, port=settings.api_port, log_config=None)

if __name__ == "__main__":
    main()
