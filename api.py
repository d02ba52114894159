import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Generic, List, Optional, TypeVar

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, Security, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

import database
from auth import TokenError, decode_access_token
from book import Book
from config import settings
from gateway import SQLiteGateway
from loan import LoanView, utcnow
from member import Member, MembershipType
from results import Outcome, ServiceResult
from services.auth_service import AuthService
from services.book_service import BookService
from services.loan_service import LoanService
from services.member_service import MemberService

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    database.initialize_database()
    logger.info(f"{settings.app_name} {settings.app_version} started ({settings.environment})")
    if settings.uses_default_secret and settings.environment != "development":
        logger.warning("JWT_SECRET_KEY is not set; tokens are signed with the built-in placeholder key")
    yield


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Request logging / security headers ---
@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)")

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"statusCode": 500, "message": "An unexpected error occurred. Please try again later."},
    )


# --- Dependencies ---
def get_gateway() -> SQLiteGateway:
    """One gateway (and connection scope) per request."""
    return SQLiteGateway(database.DATABASE_FILE)


def get_loan_service(gateway: SQLiteGateway = Depends(get_gateway)) -> LoanService:
    return LoanService(gateway)


def get_book_service(gateway: SQLiteGateway = Depends(get_gateway)) -> BookService:
    return BookService(gateway)


def get_member_service(gateway: SQLiteGateway = Depends(get_gateway)) -> MemberService:
    return MemberService(gateway)


def get_auth_service(gateway: SQLiteGateway = Depends(get_gateway)) -> AuthService:
    return AuthService(gateway)


# --- Security ---
bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    id: int
    username: str
    role: MembershipType


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme)) -> CurrentUser:
    """Dependency: the caller identified by the bearer token."""
    unauthorized = {"status_code": 401, "headers": {"WWW-Authenticate": "Bearer"}}
    if credentials is None:
        raise HTTPException(detail="Not authenticated", **unauthorized)
    try:
        claims = decode_access_token(credentials.credentials)
        return CurrentUser(
            id=int(claims["sub"]),
            username=claims.get("username", ""),
            role=MembershipType.parse(claims["role"]),
        )
    except (TokenError, ValueError) as e:
        raise HTTPException(detail=str(e), **unauthorized)


def require_roles(*roles: MembershipType):
    """Dependency factory: only callers holding one of ``roles`` get through."""

    def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            logger.warning(f"Forbidden: {user.username} ({user.role.value}) lacks {[r.value for r in roles]}")
            raise HTTPException(status_code=403, detail="Forbidden")
        return user

    return dependency


ADMIN_ONLY = require_roles(MembershipType.ADMIN)
STAFF = require_roles(MembershipType.LIBRARIAN, MembershipType.ADMIN)


def _ensure_self_or_staff(user: CurrentUser, member_id: int) -> None:
    if user.role is MembershipType.MEMBER and user.id != member_id:
        logger.warning(f"Forbidden: member {user.id} tried to act for member {member_id}")
        raise HTTPException(status_code=403, detail="Members may only act on their own loans.")


# --- Models ---
T = TypeVar("T")

_STATUS_BY_OUTCOME = {
    Outcome.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    Outcome.CONFLICT: status.HTTP_409_CONFLICT,
    Outcome.INVALID_INPUT: status.HTTP_400_BAD_REQUEST,
}


class ApiResponse(BaseModel, Generic[T]):
    """Envelope used by the book endpoints."""
    success: bool
    message: str
    data: Optional[T] = None
    errors: Optional[List[str]] = None


class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    token: str


class BookModel(BaseModel):
    id: int
    title: str
    author: str
    isbn: str
    genre: Optional[str] = None
    publication_year: Optional[int] = None
    available_copies: int


class BookCreateModel(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    author: str = Field(min_length=1, max_length=200)
    isbn: str = Field(min_length=1, max_length=50)
    genre: Optional[str] = Field(default=None, max_length=100)
    publication_year: int = Field(ge=1, le=9999)
    available_copies: int = Field(default=0, ge=0)


class MemberModel(BaseModel):
    id: int
    username: str
    name: str
    email: str
    membership_type: str


class MemberRegistrationModel(BaseModel):
    username: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1)
    email: str
    password: str = Field(min_length=1)
    membership_type: str


class MemberUpdateModel(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[str] = None
    password: Optional[str] = None
    membership_type: Optional[str] = None


class LoanRequestModel(BaseModel):
    book_id: int
    member_id: int


class LoanModel(BaseModel):
    id: int
    book_id: int
    book_title: str
    member_id: int
    member_name: str
    loan_date: datetime
    due_date: datetime
    return_date: Optional[datetime] = None


class StatsModel(BaseModel):
    total_books: int
    unique_authors: int
    available_copies: int
    total_members: int
    outstanding_loans: int


# --- Helpers ---
def _raise_for_result(result: ServiceResult) -> None:
    if not result:
        raise HTTPException(status_code=_STATUS_BY_OUTCOME[result.outcome], detail=result.message)


def _envelope_error(result: ServiceResult) -> JSONResponse:
    body = ApiResponse[BookModel](success=False, message=result.message)
    return JSONResponse(status_code=_STATUS_BY_OUTCOME[result.outcome], content=body.model_dump())


def _book_model(book: Book) -> BookModel:
    return BookModel(**book.to_dict())


def _member_model(member: Member) -> MemberModel:
    return MemberModel(**member.to_dict())


def _loan_model(view: LoanView) -> LoanModel:
    return LoanModel(
        id=view.id,
        book_id=view.book_id,
        book_title=view.book_title,
        member_id=view.member_id,
        member_name=view.member_name,
        loan_date=view.loan_date,
        due_date=view.due_date,
        return_date=view.return_date,
    )


# --- Health / stats ---
@app.get("/health")
def health():
    """Lightweight health endpoint with a quick database round trip."""
    db_ok = True
    try:
        conn = database.get_db_connection()
        try:
            conn.execute("SELECT 1")
        finally:
            conn.close()
    except Exception:
        logger.exception("Health check could not reach the database")
        db_ok = False
    return {"status": "healthy" if db_ok else "degraded", "timestamp": utcnow().isoformat(), "db": db_ok}


@app.get("/stats", response_model=StatsModel)
def get_library_stats(service: BookService = Depends(get_book_service)):
    return StatsModel(**service.get_statistics())


# --- Auth ---
@app.post("/api/auth/login", response_model=TokenResponse)
def login(request: LoginRequest, service: AuthService = Depends(get_auth_service)):
    result = service.authenticate(request.username, request.password)
    if not result:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return TokenResponse(token=result.value)


# --- Books ---
@app.get("/api/books", response_model=ApiResponse[List[BookModel]])
def get_books(q: Optional[str] = Query(None, description="Search title or author"),
              service: BookService = Depends(get_book_service)):
    books = [_book_model(b) for b in service.list_books(q)]
    return ApiResponse[List[BookModel]](success=True, message="Books retrieved successfully.", data=books)


@app.get("/api/books/{book_id}", response_model=ApiResponse[BookModel], dependencies=[Depends(STAFF)])
def get_book(book_id: int, service: BookService = Depends(get_book_service)):
    book = service.get_book(book_id)
    if not book:
        return _envelope_error(ServiceResult.not_found("Book", f"Book with ID {book_id} not found."))
    return ApiResponse[BookModel](success=True, message="Book retrieved successfully.", data=_book_model(book))


@app.post("/api/books", response_model=ApiResponse[BookModel], status_code=201, dependencies=[Depends(STAFF)])
def add_book(payload: BookCreateModel, service: BookService = Depends(get_book_service)):
    result = service.add_book(**payload.model_dump())
    if not result:
        return _envelope_error(result)
    return ApiResponse[BookModel](success=True, message="Book added successfully.", data=_book_model(result.value))


@app.put("/api/books/{book_id}", response_model=ApiResponse[BookModel], dependencies=[Depends(ADMIN_ONLY)])
def update_book(book_id: int, payload: BookCreateModel, service: BookService = Depends(get_book_service)):
    result = service.update_book(book_id, **payload.model_dump())
    if not result:
        return _envelope_error(result)
    return ApiResponse[BookModel](success=True, message="Book updated successfully.", data=_book_model(result.value))


@app.delete("/api/books/{book_id}", response_model=ApiResponse[BookModel], dependencies=[Depends(ADMIN_ONLY)])
def delete_book(book_id: int, service: BookService = Depends(get_book_service)):
    result = service.delete_book(book_id)
    if not result:
        return _envelope_error(result)
    return ApiResponse[BookModel](success=True, message="Book deleted successfully.")


# --- Members ---
@app.get("/api/members", response_model=List[MemberModel], dependencies=[Depends(ADMIN_ONLY)])
def get_members(service: MemberService = Depends(get_member_service)):
    return [_member_model(m) for m in service.list_members()]


@app.get("/api/members/{member_id}", response_model=MemberModel, dependencies=[Depends(ADMIN_ONLY)])
def get_member(member_id: int, service: MemberService = Depends(get_member_service)):
    member = service.get_member(member_id)
    if not member:
        raise HTTPException(status_code=404, detail=f"Member with ID {member_id} not found.")
    return _member_model(member)


@app.post("/api/members", response_model=MemberModel, status_code=201, dependencies=[Depends(STAFF)])
def add_member(payload: MemberRegistrationModel, service: MemberService = Depends(get_member_service)):
    result = service.register_member(**payload.model_dump())
    _raise_for_result(result)
    return _member_model(result.value)


@app.put("/api/members/{member_id}", status_code=204, dependencies=[Depends(ADMIN_ONLY)])
def update_member(member_id: int, payload: MemberUpdateModel, service: MemberService = Depends(get_member_service)):
    result = service.update_member(member_id, **payload.model_dump())
    _raise_for_result(result)
    return Response(status_code=204)


@app.delete("/api/members/{member_id}", status_code=204, dependencies=[Depends(ADMIN_ONLY)])
def delete_member(member_id: int, service: MemberService = Depends(get_member_service)):
    result = service.delete_member(member_id)
    _raise_for_result(result)
    return Response(status_code=204)


# --- Loans ---
@app.get("/api/loans", response_model=List[LoanModel], dependencies=[Depends(STAFF)])
def get_loans(service: LoanService = Depends(get_loan_service)):
    return [_loan_model(v) for v in service.list_loans()]


@app.get("/api/loans/member/{member_id}", response_model=List[LoanModel])
def get_loans_by_member(member_id: int, user: CurrentUser = Depends(get_current_user),
                        service: LoanService = Depends(get_loan_service)):
    _ensure_self_or_staff(user, member_id)
    loans = service.list_loans_by_member(member_id)
    if not loans:
        raise HTTPException(status_code=404, detail=f"No loans found for member ID {member_id}.")
    return [_loan_model(v) for v in loans]


@app.get("/api/loans/{loan_id}", response_model=LoanModel)
def get_loan(loan_id: int, user: CurrentUser = Depends(get_current_user),
             service: LoanService = Depends(get_loan_service)):
    view = service.get_loan(loan_id)
    if not view:
        raise HTTPException(status_code=404, detail=f"Loan with ID {loan_id} not found.")
    _ensure_self_or_staff(user, view.member_id)
    return _loan_model(view)


@app.post("/api/loans", response_model=LoanModel, status_code=201)
def create_loan(payload: LoanRequestModel, response: Response, user: CurrentUser = Depends(get_current_user),
                service: LoanService = Depends(get_loan_service)):
    _ensure_self_or_staff(user, payload.member_id)
    result = service.create_loan(payload.book_id, payload.member_id)
    _raise_for_result(result)
    response.headers["Location"] = f"/api/loans/{result.value.id}"
    return _loan_model(result.value)


@app.put("/api/loans/{loan_id}/return", status_code=204)
def return_book(loan_id: int, user: CurrentUser = Depends(get_current_user),
                service: LoanService = Depends(get_loan_service)):
    if user.role is MembershipType.MEMBER:
        view = service.get_loan(loan_id)
        if view is not None:
            _ensure_self_or_staff(user, view.member_id)
    result = service.return_book(loan_id)
    _raise_for_result(result)
    return Response(status_code=204)
