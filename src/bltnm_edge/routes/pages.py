"""Landing, shop and dashboard pages served behind the host router."""

from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter()


def _page(request: Request, template: str, section: str, subpath: str = ""):
    templates = request.app.state.templates
    host = request.headers.get("host", "")
    visible_path = getattr(request.state, "original_path", request.url.path)
    return templates.TemplateResponse(request, template, {
        "section": section,
        "subpath": subpath,
        "visible_path": visible_path,
        "host": host,
        "csrf_token": request.state.csrf_token,
        "proper_url": lambda path: request.app.state.router.proper_url(path, host),
    })


@router.get("/landing")
async def landing(request: Request):
    return _page(request, "pages/landing.html", "landing")


@router.get("/shop")
@router.get("/shop/{subpath:path}")
async def shop(request: Request, subpath: str = ""):
    return _page(request, "pages/shop.html", "shop", subpath)


@router.get("/dashboard")
@router.get("/dashboard/{subpath:path}")
async def dashboard(request: Request, subpath: str = ""):
    return _page(request, "pages/dashboard.html", "dashboard", subpath)
