"""Web 层统一响应辅助函数"""

from __future__ import annotations

from flask import Response, jsonify

from dnpmanager.core.exceptions import DnpManagerError

# 业务异常 code -> HTTP 状态码
ERROR_STATUS: dict[str, int] = {
    "NOT_FOUND": 404,
    "VALIDATION_ERROR": 400,
    "CYCLIC_DEPENDENCY": 422,
    "COMPOSE_PARSE": 422,
    "FETCH_TIMEOUT": 504,
    "CONTENT_STORE_ERROR": 502,
}


def ok(data: dict, status: int = 200) -> tuple[Response, int] | Response:
    """成功响应"""
    if status == 200:
        return jsonify(data)
    return jsonify(data), status


def bad_request(message: str) -> tuple[Response, int]:
    """请求参数错误"""
    return jsonify(error=message), 400


def error_response(exc: DnpManagerError) -> tuple[Response, int]:
    """业务异常 -> JSON 错误响应"""
    body: dict = {"error": str(exc), "code": exc.code}
    path = getattr(exc, "path", None)
    if path:
        body["path"] = path
    details = getattr(exc, "details", None)
    if details:
        body["details"] = details
    return jsonify(body), ERROR_STATUS.get(exc.code, 500)
