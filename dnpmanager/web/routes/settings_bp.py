"""运行设置 API Blueprint"""

from __future__ import annotations

from flask import Blueprint, request

from dnpmanager.web.responses import bad_request, ok

settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


def _container():  # type: ignore[no-untyped-def]
    from dnpmanager.services.container import get_container
    return get_container()


@settings_bp.route("/auto-update", methods=["GET"])
def api_auto_update_list():
    return ok({"settings": _container().auto_update.list_all()})


@settings_bp.route("/auto-update", methods=["POST"])
def api_auto_update_edit():
    body = request.get_json(silent=True) or {}
    if "enabled" not in body:
        return bad_request("需要提供 enabled")
    _container().auto_update.edit(body.get("id", ""), bool(body["enabled"]))
    return ok({"message": "自动更新设置已修改", "id": body.get("id", "")})


@settings_bp.route("/fetch-timeout", methods=["POST"])
def api_fetch_timeout():
    body = request.get_json(silent=True) or {}
    cfg = _container().config
    cfg.set_fetch_timeout(body.get("timeout"))
    return ok({"fetch_timeout": cfg.fetch_timeout})
