"""全局环境变量 API Blueprint"""

from __future__ import annotations

from flask import Blueprint, request

from dnpmanager.web.responses import bad_request, ok

global_envs_bp = Blueprint("global_envs", __name__, url_prefix="/api/global-envs")


def _store():  # type: ignore[no-untyped-def]
    from dnpmanager.services.container import get_container
    return get_container().global_envs


@global_envs_bp.route("", methods=["GET"])
def api_list():
    return ok({"envs": _store().all()})


@global_envs_bp.route("/<key>", methods=["GET"])
def api_get(key: str):
    value = _store().get(key)
    if value is None:
        return ok({"error": f"全局变量未设置: {key}"}, status=404)
    return ok({"key": key, "value": value})


@global_envs_bp.route("", methods=["POST"])
def api_set():
    """写入全局变量；持久化完成即返回 202，传播在后台进行"""
    body = request.get_json(silent=True) or {}
    key = body.get("key", "")
    if not key or "value" not in body:
        return bad_request("需要提供 key 和 value")
    store = _store()
    full_key = store.set(key, store.coerce(key, body["value"]))
    return ok({"message": f"全局变量已写入: {full_key}", "key": full_key}, status=202)
