"""HTTP adapter for the loan ledger.

Mirrors the REST surface the library front-end talks to
(``/api/v1/books``, ``/borrowers``, ``/loans``...). Request bodies are
wrapped in a resource key (``{"loan": {...}}``) and failures come back as
``{"error": <condition>, "detail": <message>, <field>: [<message>]}``.
"""

import logging
from functools import lru_cache
from typing import Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from loanledger.config import configure_logging, settings
from loanledger.database import SQLITE_MAX_INTEGER
from loanledger.errors import LedgerBusy, LendingError, NotFoundError
from loanledger.library import BookReport, BorrowerReport, Library
from loanledger.lending import LoanReport

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_library() -> Library:
    """Process-wide Library; tests override this dependency."""
    return Library(db_file=settings.db_file)


# --- Models ---
class BookIn(BaseModel):
    title: str
    isbn: str
    stock: int = Field(ge=0, le=SQLITE_MAX_INTEGER)


class BookUpdate(BaseModel):
    title: Optional[str] = None
    isbn: Optional[str] = None
    stock: Optional[int] = Field(default=None, ge=0, le=SQLITE_MAX_INTEGER)


class BookCreateRequest(BaseModel):
    book: BookIn


class BookUpdateRequest(BaseModel):
    book: BookUpdate


class BookModel(BaseModel):
    id: int
    title: str
    isbn: str
    stock: int
    available_copies: int
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class BorrowerIn(BaseModel):
    id_card_number: str
    name: str
    email: str


class BorrowerUpdate(BaseModel):
    id_card_number: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None


class BorrowerCreateRequest(BaseModel):
    borrower: BorrowerIn


class BorrowerUpdateRequest(BaseModel):
    borrower: BorrowerUpdate


class BorrowerModel(BaseModel):
    id: int
    id_card_number: str
    name: str
    email: str
    has_active_loan: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class LoanIn(BaseModel):
    book_id: int
    borrower_id: int
    # "YYYY-MM-DD" is anchored to the current time of day; full ISO-8601 instants are kept
    due_date: str


class LoanCreateRequest(BaseModel):
    loan: LoanIn


class LoanBookSummary(BaseModel):
    id: int
    title: str
    isbn: str
    available_copies: int


class LoanBorrowerSummary(BaseModel):
    id: int
    name: str
    id_card_number: str
    has_active_loan: bool


class LoanModel(BaseModel):
    id: int
    book_id: int
    borrower_id: int
    status: str
    borrowed_at: str
    due_date: str
    returned_at: Optional[str] = None
    overdue: bool
    days_overdue: int
    book: Optional[LoanBookSummary] = None
    borrower: Optional[LoanBorrowerSummary] = None


class StatsModel(BaseModel):
    total_books: int
    total_copies: int
    available_copies: int
    total_borrowers: int
    borrowers_with_active_loan: int
    total_loans: int
    active_loans: int
    overdue_loans: int
    returned_loans: int


# --- Helpers ---
def _book(report: BookReport) -> BookModel:
    return BookModel(**report.to_dict())


def _borrower(report: BorrowerReport) -> BorrowerModel:
    return BorrowerModel(**report.to_dict())


def _loan(report: LoanReport) -> LoanModel:
    return LoanModel(**report.to_dict())


def _error_payload(exc: LendingError) -> Dict[str, object]:
    return {"error": exc.code, "detail": exc.message, exc.field: [exc.message]}


async def lending_error_handler(request: Request, exc: LendingError) -> JSONResponse:
    if isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, LedgerBusy):
        status_code = 503
    else:
        status_code = 422
    logger.info(f"{request.method} {request.url.path} -> {status_code} {exc.code}: {exc.message}")
    return JSONResponse(status_code=status_code, content=_error_payload(exc))


# --- Books ---
router = APIRouter()


@router.get("/books", response_model=List[BookModel])
def list_books(library: Library = Depends(get_library)):
    """All books with their available copies."""
    return [_book(b) for b in library.list_books()]


@router.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: int, library: Library = Depends(get_library)):
    return _book(library.get_book(book_id))


@router.post("/books", response_model=BookModel, status_code=201)
def create_book(payload: BookCreateRequest, library: Library = Depends(get_library)):
    data = payload.book
    return _book(library.add_book(title=data.title, isbn=data.isbn, stock=data.stock))


@router.put("/books/{book_id}", response_model=BookModel)
def update_book(book_id: int, payload: BookUpdateRequest, library: Library = Depends(get_library)):
    data = payload.book
    return _book(library.update_book(book_id, title=data.title, isbn=data.isbn, stock=data.stock))


@router.delete("/books/{book_id}", status_code=204)
def delete_book(book_id: int, library: Library = Depends(get_library)):
    """Delete a book; refused while it has loans."""
    library.remove_book(book_id)


# --- Borrowers ---
@router.get("/borrowers", response_model=List[BorrowerModel])
def list_borrowers(library: Library = Depends(get_library)):
    return [_borrower(b) for b in library.list_borrowers()]


@router.get("/borrowers/{borrower_id}", response_model=BorrowerModel)
def get_borrower(borrower_id: int, library: Library = Depends(get_library)):
    return _borrower(library.get_borrower(borrower_id))


@router.post("/borrowers", response_model=BorrowerModel, status_code=201)
def create_borrower(payload: BorrowerCreateRequest, library: Library = Depends(get_library)):
    data = payload.borrower
    return _borrower(library.add_borrower(id_card_number=data.id_card_number, name=data.name, email=data.email))


@router.put("/borrowers/{borrower_id}", response_model=BorrowerModel)
def update_borrower(borrower_id: int, payload: BorrowerUpdateRequest, library: Library = Depends(get_library)):
    data = payload.borrower
    return _borrower(
        library.update_borrower(borrower_id, id_card_number=data.id_card_number, name=data.name, email=data.email)
    )


@router.delete("/borrowers/{borrower_id}", status_code=204)
def delete_borrower(borrower_id: int, library: Library = Depends(get_library)):
    library.remove_borrower(borrower_id)


# --- Loans ---
@router.get("/loans", response_model=List[LoanModel])
def list_loans(
    status: Literal["all", "active", "returned", "overdue"] = Query("all", description="Loan view"),
    book_id: Optional[int] = Query(None),
    borrower_id: Optional[int] = Query(None),
    library: Library = Depends(get_library),
):
    """Loans newest first, with derived overdue state."""
    return [_loan(r) for r in library.list_loans(status=status, book_id=book_id, borrower_id=borrower_id)]


@router.get("/loans/active_loans", response_model=List[LoanModel])
def list_active_loans(library: Library = Depends(get_library)):
    return [_loan(r) for r in library.list_loans(status="active")]


@router.get("/loans/overdue_loans", response_model=List[LoanModel])
def list_overdue_loans(library: Library = Depends(get_library)):
    return [_loan(r) for r in library.list_loans(status="overdue")]


@router.get("/loans/{loan_id}", response_model=LoanModel)
def get_loan(loan_id: int, library: Library = Depends(get_library)):
    return _loan(library.get_loan(loan_id))


@router.post("/loans", response_model=LoanModel, status_code=201)
def create_loan(payload: LoanCreateRequest, library: Library = Depends(get_library)):
    data = payload.loan
    return _loan(library.create_loan(data.book_id, data.borrower_id, data.due_date))


@router.post("/loans/{loan_id}/return_book", response_model=LoanModel)
def return_book(loan_id: int, library: Library = Depends(get_library)):
    return _loan(library.return_loan(loan_id))


# --- Statistics ---
@router.get("/stats", response_model=StatsModel)
def get_stats(library: Library = Depends(get_library)):
    """Dashboard counts: catalogue plus total/active/overdue/returned loans."""
    return StatsModel(**library.get_statistics())


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=settings.app_name, version=settings.app_version, debug=settings.debug)

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(LendingError, lending_error_handler)
    app.include_router(router, prefix=settings.api_prefix)

    # --- Health check ---
    @app.get("/health")
    def health(library: Library = Depends(get_library)):
        """Lightweight health endpoint with a quick database check."""
        return {
            "status": "healthy",
            "timestamp": library.clock.now().isoformat(),
            "db": library.health(),
            "version": settings.app_version,
        }

    return app


app = create_app()
