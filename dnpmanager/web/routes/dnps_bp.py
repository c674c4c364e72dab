"""安装计划 API Blueprint"""

from __future__ import annotations

from flask import Blueprint, request

from dnpmanager.web.responses import bad_request, ok

dnps_bp = Blueprint("dnps", __name__, url_prefix="/api/dnps")


@dnps_bp.route("/plan", methods=["GET"])
def api_plan():
    """生成安装计划，?id=name@range / name / 内容哈希"""
    from dnpmanager.services.container import get_container
    req = (request.args.get("id") or "").strip()
    if not req:
        return bad_request("需要提供 id")
    result = get_container().planner.plan(req)
    return ok(result.to_dict())
