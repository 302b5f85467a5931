"""身份提供方集成层。

该包下的模块负责：
- 定义 IdentityProvider 抽象接口 (base)。
- 提供具体实现 (firebase_client)。
"""

from typing import Optional

from jai_core.config.settings import settings
from jai_core.identity.base import IdentityProvider
from jai_core.identity.firebase_client import FirebaseIdentityProvider


def create_identity_provider(name: Optional[str] = None) -> IdentityProvider:
    """根据名称创建身份提供方实例，目前只有 firebase。"""

    provider_name = (name or "firebase").lower()
    if provider_name != "firebase":
        raise ValueError(f"Unknown identity provider: {provider_name}")
    return FirebaseIdentityProvider(settings)
