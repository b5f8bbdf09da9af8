import logging
from typing import List, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles

from config import Settings, get_settings
from courses import get_course, list_courses, publish_course
from credentials import ADMIN, USER, register_user, seed_admin, verifier_for
from database import ensure_indexes, get_db
from errors import ServiceError
from logging_config import configure_logging, get_request_id, reset_request_id, set_request_id
from schemas import AdminLogin, CoursePublic, PublishResponse, Token, UserCreate, UserLogin
from tokens import TokenIssuer, get_token_issuer, issue_admin_token, issue_user_token, lookup_last_token
from uploads import UploadLimitMiddleware, ensure_directory

logger = logging.getLogger("api")

_settings = get_settings()

app = FastAPI(title="Course Catalog API")

# Oversized upload bodies are refused before the multipart form is parsed
app.add_middleware(UploadLimitMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Uploaded videos are served back read-only by storage name
app.mount("/uploads", StaticFiles(directory=_settings.upload_dir, check_dir=False), name="uploads")


@app.middleware("http")
async def request_context(request: Request, call_next):
    token = set_request_id(request.headers.get("X-Request-ID") or uuid4().hex)
    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = get_request_id()
        return response
    finally:
        reset_request_id(token)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    extra = {"path": request.url.path, "method": request.method, "status_code": exc.status_code}
    if exc.status_code >= 500:
        logger.error("%s: %s", type(exc).__name__, exc.__cause__ or exc.message, extra=extra)
    else:
        logger.info("%s: %s", type(exc).__name__, exc.message, extra=extra)
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.info("Request validation failed: %s", exc.errors(), extra={"path": request.url.path})
    return JSONResponse(status_code=400, content={"message": "Invalid request"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", extra={"path": request.url.path, "method": request.method})
    return JSONResponse(status_code=500, content={"message": "Server error"})


@app.on_event("startup")
async def startup_event():
    settings = get_settings()
    configure_logging(settings.log_level)
    ensure_directory(settings.upload_dir)
    db = get_db()
    try:
        await ensure_indexes(db)
        await seed_admin(db, settings)
    except ServiceError as e:
        # The store may come up later; requests report their own failures
        logger.error("Store initialisation failed: %s", e.__cause__ or e)
    logger.info("Server running, uploads in %s", settings.upload_dir)


@app.get("/")
async def root():
    return {"message": "Server running"}


# Courses
@app.post("/courses", status_code=201, response_model=PublishResponse)
async def create_course(
    request: Request,
    courseName: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    videoPreview: Optional[UploadFile] = File(None),
    fullVideo: Optional[UploadFile] = File(None),
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    origin = f"{request.url.scheme}://{request.url.netloc}"
    course = await publish_course(
        db, settings, courseName, description, price, videoPreview, fullVideo, origin
    )
    return {"message": "Upload successful!", "course": course}


@app.get("/courses", response_model=List[CoursePublic])
async def get_courses(db=Depends(get_db)):
    return await list_courses(db)


@app.get("/courses/{course_id}", response_model=CoursePublic)
async def get_course_by_id(course_id: str, db=Depends(get_db)):
    return await get_course(db, course_id)


# Auth routes
@app.post("/register", status_code=201, response_class=PlainTextResponse)
async def register(user_in: UserCreate, db=Depends(get_db)):
    await register_user(db, user_in)
    return PlainTextResponse("User registered successfully", status_code=201)


@app.post("/auth/login", response_model=Token)
async def login(
    credentials: UserLogin,
    db=Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
):
    verified = await verifier_for(USER).verify(db, credentials.email, credentials.password)
    return {"token": issue_user_token(issuer, verified)}


@app.post("/admin/login", response_model=Token)
async def admin_login(
    credentials: AdminLogin,
    db=Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
):
    verified = await verifier_for(ADMIN).verify(db, credentials.username, credentials.password)
    return {"token": await issue_admin_token(db, issuer, verified)}


@app.get("/admin/login", response_model=Token)
async def admin_last_token(username: Optional[str] = None, db=Depends(get_db)):
    return {"token": await lookup_last_token(db, username)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=_settings.port)
