"""HTTP API（基于 Flask）

提供：安装计划查询、全局环境变量读写、自动更新与超时设置。

启动方式: dnpmanager dashboard --port 8888
生产部署: gunicorn --config deploy/gunicorn.conf.py dnpmanager.web.app:app
"""

from __future__ import annotations

import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from dnpmanager import __version__
from dnpmanager.core.exceptions import DnpManagerError
from dnpmanager.web.responses import error_response
from dnpmanager.web.routes import dnps_bp, global_envs_bp, settings_bp

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 1024 * 1024  # 1 MB


def create_app() -> Flask:
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = MAX_CONTENT_LENGTH

    app.register_blueprint(dnps_bp)
    app.register_blueprint(global_envs_bp)
    app.register_blueprint(settings_bp)

    # =====================================================================
    # 全局 JSON 错误处理
    # =====================================================================

    @app.errorhandler(DnpManagerError)
    def handle_business_error(exc: DnpManagerError):
        logger.warning("请求失败 [%s]: %s", exc.code, exc)
        return error_response(exc)

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        """将所有 HTTP 异常统一返回 JSON"""
        return jsonify(error=exc.description), exc.code

    @app.errorhandler(Exception)
    def handle_generic_exception(exc: Exception):  # noqa: ARG001
        """捕获未处理异常，返回 500 JSON"""
        logger.exception("未处理的异常")
        return jsonify(error="服务器内部错误"), 500

    @app.route("/api/health")
    def api_health():
        return jsonify(status="ok", version=__version__)

    return app


app = create_app()


def run_server(port: int = 8888, debug: bool = False, host: str = "127.0.0.1") -> None:
    logger.info("dnpmanager API 已启动: http://%s:%d", host, port)
    app.run(host=host, port=port, debug=debug)
