#!/usr/bin/env python3
"""
本地开发服务器

    python run_dev.py                 # 127.0.0.1:8000，热重载
    python run_dev.py --port 8080 --no-reload

日志级别默认取 settings.yaml / LOGGING__LEVEL。
"""

import argparse

import uvicorn

from double_ai.config import Config


def main():
    parser = argparse.ArgumentParser(description="Double AI dev server")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--no-reload", dest="reload", action="store_false", help="Disable auto-reload")
    parser.add_argument("--log-level", default=Config.logging.level.lower(),
                        choices=["debug", "info", "warning", "error"])
    args = parser.parse_args()

    print(f"🤖 Double AI on http://{args.host}:{args.port}  (docs: /docs, model: {Config.llm.default_model})")

    uvicorn.run(
        "double_ai.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        reload_dirs=["double_ai"] if args.reload else None,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
