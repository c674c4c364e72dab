"""dnpmanager - DAppNode 包发布解析、安装计划与全局环境变量传播"""

__version__ = "0.2.0"
