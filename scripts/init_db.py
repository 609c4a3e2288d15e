"""
建表 + （可选）写入全局设置

首次部署时运行一次：
    python scripts/init_db.py
    python scripts/init_db.py --global-api-key sk-... --allow-user-api-keys

API key 经 KeyCipher 加密后入库，不会打印出来。
"""

import argparse
import asyncio

from double_ai.config import setup_logging
from double_ai.database.db.models import Base
from double_ai.database.db.session import engine
from double_ai.database.settings_repository import SettingsRepository
from double_ai.service.crypto_service import get_cipher
from double_ai.service.settings_service import SettingsService


def parse_args():
    parser = argparse.ArgumentParser(description="Create the Double AI schema and seed global settings")
    parser.add_argument("--global-api-key", help="Deployment-wide provider API key")
    parser.add_argument("--model", dest="model_version", help="Default model, e.g. gpt-4o")
    parser.add_argument("--allow-user-api-keys", action="store_true", default=None,
                        help="Let users bring their own API key")
    return parser.parse_args()


def main():
    args = parse_args()
    setup_logging()

    Base.metadata.create_all(bind=engine)
    print("✅ Database schema ready.")

    patch = {
        k: v
        for k, v in {
            "global_api_key": args.global_api_key,
            "model_version": args.model_version,
            "allow_user_api_keys": args.allow_user_api_keys,
        }.items()
        if v is not None
    }
    if not patch:
        return

    service = SettingsService(SettingsRepository(), get_cipher())
    saved = asyncio.run(service.update_global_settings(patch))
    print(f"⚙️ Global settings saved: model={saved['model_version']}, "
          f"user keys allowed={saved['allow_user_api_keys']}")


if __name__ == "__main__":
    main()
