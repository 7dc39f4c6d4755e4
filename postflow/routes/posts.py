from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import HTMLResponse, RedirectResponse
from pydantic import ValidationError
from pymongo.errors import PyMongoError
from starlette import status
from typing import Optional
import structlog

from ..services.posts import PostService
from ..utils.uploads import remove_image, save_image

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["posts"])

POSTS_URL = "/posts"
NEW_POST_URL = "/posts/new"


def get_post_service(request: Request) -> PostService:
    return request.app.state.post_service


def render(request: Request, name: str, context: Optional[dict] = None, status_code: int = 200):
    return request.app.state.templates.TemplateResponse(request, name, context or {}, status_code=status_code)


def redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=status.HTTP_303_SEE_OTHER)


def client_ip(request: Request) -> Optional[str]:
    if request.client and request.client.host:
        return request.client.host
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return None


# ----------------- PAGES -----------------
@router.get("/", response_class=HTMLResponse)
def home(request: Request, svc: PostService = Depends(get_post_service)):
    return render(request, "home.html", {"posts_count": svc.count()})


@router.get("/posts", response_class=HTMLResponse)
def list_posts(request: Request, svc: PostService = Depends(get_post_service)):
    return render(request, "index.html", {"posts": svc.list()})


@router.get("/posts/new", response_class=HTMLResponse)
def new_post_form(request: Request):
    return render(request, "new.html")


# ----------------- CREATE -----------------
@router.post("/posts")
def create_post(
    request: Request,
    username: str = Form(""),
    content: str = Form(""),
    image: Optional[UploadFile] = File(None),
    svc: PostService = Depends(get_post_service),
):
    # UploadError propagates to the application's exception handlers
    image_path = save_image(svc.static_dir, image)
    try:
        svc.create(
            username=username,
            content=content,
            image=image_path,
            user_ip=client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
    except (ValidationError, PyMongoError) as exc:
        logger.warning("post_create_failed", error=str(exc))
        remove_image(svc.static_dir, image_path)
        return redirect(NEW_POST_URL)
    return redirect(POSTS_URL)


# ----------------- READ -----------------
@router.get("/posts/{post_id}", response_class=HTMLResponse)
def show_post(post_id: str, request: Request, svc: PostService = Depends(get_post_service)):
    try:
        post = svc.view(post_id)
    except PyMongoError as exc:
        logger.error("post_fetch_failed", post_id=post_id, error=str(exc))
        return redirect(POSTS_URL)
    if post is None:
        return redirect(POSTS_URL)
    return render(request, "show.html", {"post": post})


@router.get("/posts/{post_id}/edit", response_class=HTMLResponse)
def edit_post_form(post_id: str, request: Request, svc: PostService = Depends(get_post_service)):
    try:
        post = svc.get(post_id)
    except PyMongoError as exc:
        logger.error("post_fetch_for_edit_failed", post_id=post_id, error=str(exc))
        return redirect(POSTS_URL)
    if post is None:
        return redirect(POSTS_URL)
    return render(request, "edit.html", {"post": post})


# ----------------- UPDATE -----------------
@router.patch("/posts/{post_id}")
def update_post(
    post_id: str,
    content: str = Form(""),
    image: Optional[UploadFile] = File(None),
    svc: PostService = Depends(get_post_service),
):
    image_path = save_image(svc.static_dir, image)
    try:
        post = svc.update(post_id, content=content, image=image_path)
    except (ValidationError, PyMongoError) as exc:
        logger.warning("post_update_failed", post_id=post_id, error=str(exc))
        post = None
    if post is None:
        remove_image(svc.static_dir, image_path)
    return redirect(POSTS_URL)


# ----------------- DELETE -----------------
@router.delete("/posts/{post_id}")
def delete_post(post_id: str, svc: PostService = Depends(get_post_service)):
    try:
        svc.delete(post_id)
    except PyMongoError as exc:
        logger.error("post_delete_failed", post_id=post_id, error=str(exc))
    return redirect(POSTS_URL)
