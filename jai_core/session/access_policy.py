"""路由访问策略。

所有“是否能进入某个页面”的判断集中在 decide 这一个纯函数里：
无 I/O、无缓存，每次导航与每次会话变化都必须重新计算。

规则（按顺序匹配）：
1. 会话仍在加载 -> SHOW_LOADING
2. 受保护路由且未登录 -> REDIRECT_TO_LOGIN
3. 受保护路由且为未验证的密码用户 -> REDIRECT_TO_VERIFY
4. 仅限未登录路由且已登录 -> 未验证密码用户去验证页，否则回首页
5. 验证页，既没有用户也没有上一页带来的邮箱提示 -> REDIRECT_TO_LOGIN
6. 验证页，已验证的密码用户 -> REDIRECT_TO_HOME
7. 其他 -> ALLOW

联合登录用户永远不会被要求验证邮箱。
"""

from typing import Dict, Optional, Tuple

from jai_core.domain.models import AccessDecision, ProviderKind, RouteKind, Session

HOME_PATH = "/"
LOGIN_PATH = "/login"
VERIFY_PATH = "/verify-email"

ROUTES: Dict[str, RouteKind] = {
    HOME_PATH: RouteKind.PROTECTED,
    LOGIN_PATH: RouteKind.PUBLIC_ONLY,
    VERIFY_PATH: RouteKind.VERIFICATION,
}

_REDIRECT_TARGETS: Dict[AccessDecision, str] = {
    AccessDecision.REDIRECT_TO_LOGIN: LOGIN_PATH,
    AccessDecision.REDIRECT_TO_VERIFY: VERIFY_PATH,
    AccessDecision.REDIRECT_TO_HOME: HOME_PATH,
}


def route_kind(path: str) -> RouteKind:
    """未知路径按首页处理（受保护）。"""
    normalized = path.split("?", 1)[0].rstrip("/") or HOME_PATH
    return ROUTES.get(normalized, RouteKind.PROTECTED)


def decide(
    session: Session,
    route: RouteKind,
    verification_hint: Optional[str] = None,
) -> AccessDecision:
    if session.is_loading:
        return AccessDecision.SHOW_LOADING

    has_user = session.has_user
    unverified_password_user = has_user and session.needs_verification

    if route is RouteKind.PROTECTED:
        if not has_user:
            return AccessDecision.REDIRECT_TO_LOGIN
        if unverified_password_user:
            return AccessDecision.REDIRECT_TO_VERIFY
        return AccessDecision.ALLOW

    if route is RouteKind.PUBLIC_ONLY:
        if not has_user:
            return AccessDecision.ALLOW
        if unverified_password_user:
            return AccessDecision.REDIRECT_TO_VERIFY
        return AccessDecision.REDIRECT_TO_HOME

    # RouteKind.VERIFICATION
    if not has_user:
        return AccessDecision.ALLOW if verification_hint else AccessDecision.REDIRECT_TO_LOGIN
    if ProviderKind.PASSWORD in session.sign_in_providers and session.is_email_verified:
        return AccessDecision.REDIRECT_TO_HOME
    return AccessDecision.ALLOW


def redirect_target(decision: AccessDecision) -> Optional[str]:
    return _REDIRECT_TARGETS.get(decision)


def navigate(
    session: Session,
    path: str,
    verification_hint: Optional[str] = None,
) -> Tuple[AccessDecision, Optional[str]]:
    """计算导航结果：(决策, 需要跳转到的路径；ALLOW/SHOW_LOADING 时为 None)。"""
    decision = decide(session, route_kind(path), verification_hint)
    return decision, redirect_target(decision)
