"""Web 路由模块 - Blueprint 集合

- dnps_bp.py:        安装计划
- global_envs_bp.py: 全局环境变量
- settings_bp.py:    自动更新 / 内容存储超时
"""

from dnpmanager.web.routes.dnps_bp import dnps_bp
from dnpmanager.web.routes.global_envs_bp import global_envs_bp
from dnpmanager.web.routes.settings_bp import settings_bp

__all__ = [
    "dnps_bp",
    "global_envs_bp",
    "settings_bp",
]
