from typing import Optional

from fastapi import Header, HTTPException, Query, Request, status

from idle_monitor.services.monitor import Monitor


def get_monitor(request: Request) -> Monitor:
    return request.app.state.monitor


def require_admin_token(
    request: Request,
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    token: Optional[str] = Query(default=None),
) -> None:
    expected = get_monitor(request).settings.admin_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="ADMIN_TOKEN not configured",
        )
    provided = x_admin_token or token
    if not provided or provided != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")
