from pathlib import Path
from time import time
from typing import Any, Optional

from sqlalchemy import Column, Float, Integer, String, Text, func, or_, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Field, Session, SQLModel, create_engine, select

from .config import settings

engine: Engine | None = None


class DuplicateError(ValueError):
    """A unique column (sku, slug) already holds the submitted value."""


class NotFoundError(LookupError):
    pass


def _db_path() -> Path:
    path = Path(settings.DATABASE_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def refresh_engine() -> None:
    global engine
    if engine is not None:
        engine.dispose()
    db_path = _db_path()
    engine = create_engine(
        f"sqlite:///{db_path}",
        echo=False,
        connect_args={"check_same_thread": False},
    )


def _get_engine() -> Engine:
    global engine
    desired = str(_db_path())
    if engine is None or engine.url.database != desired:
        refresh_engine()
    assert engine is not None
    return engine


def _now() -> int:
    return int(time())


class ContactMessage(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str
    email: str = Field(sa_column=Column(String, nullable=False, index=True))
    phone: str | None = None
    subject: str
    message: str = Field(sa_column=Column(Text, nullable=False))
    order_number: str | None = None
    ip: str | None = None
    created_at: int = Field(sa_column=Column(Integer, nullable=False))


class CareerApplication(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str
    email: str
    role: str = Field(sa_column=Column(String, nullable=False, index=True))
    message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    cv_path: str | None = None
    status: str = Field(default="pending")
    created_at: int = Field(sa_column=Column(Integer, nullable=False))


class Product(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    slug: str = Field(sa_column=Column(String, nullable=False, unique=True, index=True))
    sku: str = Field(sa_column=Column(String, nullable=False, unique=True))
    name: str
    description: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    category: str = Field(sa_column=Column(String, nullable=False, index=True))
    price: float = Field(sa_column=Column(Float, nullable=False))
    stock_quantity: int = Field(default=0)
    image_url: str | None = None
    active: bool = Field(default=True)
    created_at: int = Field(sa_column=Column(Integer, nullable=False))
    updated_at: int = Field(sa_column=Column(Integer, nullable=False))


class MediaPost(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    type: str = Field(sa_column=Column(String, nullable=False, index=True))
    title: str
    body: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    image_url: str | None = None
    published_at: int = Field(sa_column=Column(Integer, nullable=False))


class JobPosting(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    title: str
    title_ar: str | None = None
    department: str
    location: str
    job_type: str
    working_hours: str | None = None
    description: str = Field(sa_column=Column(Text, nullable=False))
    description_ar: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    requirements: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    requirements_ar: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    is_active: bool = Field(default=True, index=True)
    created_at: int = Field(sa_column=Column(Integer, nullable=False))


class Category(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str
    name_ar: str | None = None
    slug: str = Field(sa_column=Column(String, nullable=False, unique=True, index=True))
    type: str = Field(sa_column=Column(String, nullable=False, index=True))
    icon: str | None = None
    description: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: int = Field(sa_column=Column(Integer, nullable=False))


class StaffUser(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str
    email: str = Field(sa_column=Column(String, nullable=False, unique=True, index=True))
    phone: str | None = None
    role: str = Field(default="user")
    status: str = Field(default="active")
    created_at: int = Field(sa_column=Column(Integer, nullable=False))


def init_db():
    _prepare_schema()


def _prepare_schema() -> Engine:
    eng = _get_engine()
    SQLModel.metadata.create_all(eng)
    return eng


def _dump(row: SQLModel) -> dict[str, Any]:
    return row.model_dump()


# contact ------------------------------------------------------------------


def save_contact(data: dict[str, Any], ip: str | None) -> dict[str, Any]:
    eng = _prepare_schema()
    with Session(eng) as session:
        row = ContactMessage(
            name=data["name"],
            email=data["email"],
            phone=data.get("phone"),
            subject=data["subject"],
            message=data["message"],
            order_number=data.get("orderNumber"),
            ip=ip,
            created_at=_now(),
        )
        session.add(row)
        session.commit()
        session.refresh(row)
        return _dump(row)


def list_contacts(limit: int = 100, offset: int = 0) -> list[dict[str, Any]]:
    eng = _prepare_schema()
    with Session(eng) as session:
        stmt = (
            select(ContactMessage)
            .order_by(ContactMessage.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return [_dump(row) for row in session.exec(stmt)]


# careers ------------------------------------------------------------------


def save_application(data: dict[str, Any]) -> dict[str, Any]:
    eng = _prepare_schema()
    with Session(eng) as session:
        row = CareerApplication(
            name=data["name"],
            email=data["email"],
            role=data["role"],
            message=data.get("message"),
            cv_path=data.get("cv_path"),
            created_at=_now(),
        )
        session.add(row)
        session.commit()
        session.refresh(row)
        return _dump(row)


def list_applications(role: Optional[str] = None) -> list[dict[str, Any]]:
    eng = _prepare_schema()
    with Session(eng) as session:
        stmt = select(CareerApplication).order_by(CareerApplication.id.desc())
        if role:
            stmt = stmt.where(CareerApplication.role == role)
        return [_dump(row) for row in session.exec(stmt)]


def update_application_status(app_id: int, status: str) -> dict[str, Any]:
    eng = _prepare_schema()
    with Session(eng) as session:
        row = session.get(CareerApplication, app_id)
        if row is None:
            raise NotFoundError(app_id)
        row.status = status
        session.add(row)
        session.commit()
        session.refresh(row)
        return _dump(row)


def delete_application(app_id: int) -> None:
    eng = _prepare_schema()
    with Session(eng) as session:
        row = session.get(CareerApplication, app_id)
        if row is None:
            raise NotFoundError(app_id)
        session.delete(row)
        session.commit()


# products -----------------------------------------------------------------


def query_products(
    category: Optional[str] = None,
    q: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    include_inactive: bool = False,
) -> tuple[list[dict[str, Any]], int]:
    eng = _prepare_schema()
    with Session(eng) as session:
        stmt = select(Product)
        if not include_inactive:
            stmt = stmt.where(Product.active == True)  # noqa: E712
        if category:
            stmt = stmt.where(Product.category == category)
        if q:
            pattern = f"%{q.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Product.name).like(pattern),
                    func.lower(Product.description).like(pattern),
                )
            )

        total = session.exec(select(func.count()).select_from(stmt.subquery())).one()
        paged = stmt.order_by(Product.id).offset(offset).limit(limit)
        return [_dump(row) for row in session.exec(paged)], int(total)


def get_product_by_slug(slug: str) -> Optional[dict[str, Any]]:
    eng = _prepare_schema()
    with Session(eng) as session:
        row = session.exec(
            select(Product).where(Product.slug == slug, Product.active == True)  # noqa: E712
        ).first()
        return _dump(row) if row else None


def create_product(data: dict[str, Any]) -> dict[str, Any]:
    eng = _prepare_schema()
    now = _now()
    with Session(eng) as session:
        row = Product(**data, created_at=now, updated_at=now)
        session.add(row)
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise DuplicateError("sku or slug already exists") from exc
        session.refresh(row)
        return _dump(row)


def update_product(product_id: int, data: dict[str, Any]) -> dict[str, Any]:
    eng = _prepare_schema()
    with Session(eng) as session:
        row = session.get(Product, product_id)
        if row is None:
            raise NotFoundError(product_id)
        for key, value in data.items():
            setattr(row, key, value)
        row.updated_at = _now()
        session.add(row)
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise DuplicateError("sku or slug already exists") from exc
        session.refresh(row)
        return _dump(row)


def delete_product(product_id: int) -> None:
    eng = _prepare_schema()
    with Session(eng) as session:
        row = session.get(Product, product_id)
        if row is None:
            raise NotFoundError(product_id)
        session.delete(row)
        session.commit()


def adjust_stock(product_id: int, delta: int) -> dict[str, Any]:
    """Apply ``delta`` to the stock level in one guarded UPDATE.

    The non-negative check lives in the WHERE clause so concurrent adjustments
    cannot both pass it against the same starting quantity.
    """

    eng = _prepare_schema()
    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock_quantity + delta >= 0)
        .values(stock_quantity=Product.stock_quantity + delta, updated_at=_now())
    )
    with eng.begin() as conn:
        changed = conn.execute(stmt).rowcount

    with Session(eng) as session:
        row = session.get(Product, product_id)
        if row is None:
            raise NotFoundError(product_id)
        if not changed:
            raise ValueError(
                f"stock would go negative ({row.stock_quantity + delta})"
            )
        return _dump(row)


def inventory_overview(low_stock_threshold: int) -> dict[str, Any]:
    eng = _prepare_schema()
    with Session(eng) as session:
        total_products, total_units = session.exec(
            select(func.count(Product.id), func.coalesce(func.sum(Product.stock_quantity), 0))
        ).one()
        out_of_stock = session.exec(
            select(func.count(Product.id)).where(Product.stock_quantity == 0)
        ).one()
        low = session.exec(
            select(Product)
            .where(Product.stock_quantity < low_stock_threshold)
            .order_by(Product.stock_quantity, Product.id)
        )
        low_stock = [
            {
                "id": row.id,
                "sku": row.sku,
                "name": row.name,
                "stock_quantity": row.stock_quantity,
            }
            for row in low
        ]
    return {
        "total_products": int(total_products),
        "total_units": int(total_units),
        "out_of_stock": int(out_of_stock),
        "low_stock_threshold": low_stock_threshold,
        "low_stock": low_stock,
    }


# media --------------------------------------------------------------------


def list_media(post_type: Optional[str] = None) -> list[dict[str, Any]]:
    eng = _prepare_schema()
    with Session(eng) as session:
        stmt = select(MediaPost).order_by(MediaPost.published_at.desc(), MediaPost.id.desc())
        if post_type:
            stmt = stmt.where(MediaPost.type == post_type)
        return [_dump(row) for row in session.exec(stmt)]


def create_media(data: dict[str, Any]) -> dict[str, Any]:
    eng = _prepare_schema()
    with Session(eng) as session:
        row = MediaPost(
            type=data["type"],
            title=data["title"],
            body=data.get("body"),
            image_url=data.get("image_url"),
            published_at=int(data.get("published_at") or _now()),
        )
        session.add(row)
        session.commit()
        session.refresh(row)
        return _dump(row)


def update_media(post_id: int, data: dict[str, Any]) -> dict[str, Any]:
    eng = _prepare_schema()
    with Session(eng) as session:
        row = session.get(MediaPost, post_id)
        if row is None:
            raise NotFoundError(post_id)
        for key, value in data.items():
            setattr(row, key, value)
        session.add(row)
        session.commit()
        session.refresh(row)
        return _dump(row)


def delete_media(post_id: int) -> None:
    eng = _prepare_schema()
    with Session(eng) as session:
        row = session.get(MediaPost, post_id)
        if row is None:
            raise NotFoundError(post_id)
        session.delete(row)
        session.commit()


# jobs ---------------------------------------------------------------------


def list_jobs(active_only: bool = False) -> list[dict[str, Any]]:
    eng = _prepare_schema()
    with Session(eng) as session:
        stmt = select(JobPosting).order_by(JobPosting.created_at.desc(), JobPosting.id.desc())
        if active_only:
            stmt = stmt.where(JobPosting.is_active == True)  # noqa: E712
        return [_dump(row) for row in session.exec(stmt)]


def create_job(data: dict[str, Any]) -> dict[str, Any]:
    eng = _prepare_schema()
    with Session(eng) as session:
        row = JobPosting(**data, created_at=_now())
        session.add(row)
        session.commit()
        session.refresh(row)
        return _dump(row)


def update_job(job_id: int, data: dict[str, Any]) -> dict[str, Any]:
    eng = _prepare_schema()
    with Session(eng) as session:
        row = session.get(JobPosting, job_id)
        if row is None:
            raise NotFoundError(job_id)
        for key, value in data.items():
            setattr(row, key, value)
        session.add(row)
        session.commit()
        session.refresh(row)
        return _dump(row)


def delete_job(job_id: int) -> None:
    eng = _prepare_schema()
    with Session(eng) as session:
        row = session.get(JobPosting, job_id)
        if row is None:
            raise NotFoundError(job_id)
        session.delete(row)
        session.commit()


# categories ---------------------------------------------------------------


def list_categories(category_type: Optional[str] = None) -> list[dict[str, Any]]:
    eng = _prepare_schema()
    with Session(eng) as session:
        stmt = select(Category).order_by(Category.name, Category.id)
        if category_type:
            stmt = stmt.where(Category.type == category_type)
        return [_dump(row) for row in session.exec(stmt)]


def create_category(data: dict[str, Any]) -> dict[str, Any]:
    eng = _prepare_schema()
    with Session(eng) as session:
        row = Category(**data, created_at=_now())
        session.add(row)
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise DuplicateError("category slug already exists") from exc
        session.refresh(row)
        return _dump(row)


def update_category(category_id: int, data: dict[str, Any]) -> dict[str, Any]:
    eng = _prepare_schema()
    with Session(eng) as session:
        row = session.get(Category, category_id)
        if row is None:
            raise NotFoundError(category_id)
        for key, value in data.items():
            setattr(row, key, value)
        session.add(row)
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise DuplicateError("category slug already exists") from exc
        session.refresh(row)
        return _dump(row)


def delete_category(category_id: int) -> None:
    eng = _prepare_schema()
    with Session(eng) as session:
        row = session.get(Category, category_id)
        if row is None:
            raise NotFoundError(category_id)
        session.delete(row)
        session.commit()


# staff users --------------------------------------------------------------


def query_users(
    search: Optional[str] = None, limit: int = 100, offset: int = 0
) -> dict[str, Any]:
    eng = _prepare_schema()
    with Session(eng) as session:
        stmt = select(StaffUser)
        if search:
            pattern = f"%{search.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(StaffUser.name).like(pattern),
                    func.lower(StaffUser.email).like(pattern),
                )
            )
        total = session.exec(select(func.count()).select_from(stmt.subquery())).one()
        active = session.exec(
            select(func.count(StaffUser.id)).where(StaffUser.status == "active")
        ).one()
        everyone = session.exec(select(func.count(StaffUser.id))).one()
        paged = stmt.order_by(StaffUser.id).offset(offset).limit(limit)
        users = [_dump(row) for row in session.exec(paged)]
    return {
        "users": users,
        "total": int(total),
        "stats": {
            "total": int(everyone),
            "active": int(active),
            "inactive": int(everyone) - int(active),
        },
    }


def create_user(data: dict[str, Any]) -> dict[str, Any]:
    eng = _prepare_schema()
    with Session(eng) as session:
        row = StaffUser(**data, created_at=_now())
        session.add(row)
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise DuplicateError("email already registered") from exc
        session.refresh(row)
        return _dump(row)


def update_user(user_id: int, data: dict[str, Any]) -> dict[str, Any]:
    eng = _prepare_schema()
    with Session(eng) as session:
        row = session.get(StaffUser, user_id)
        if row is None:
            raise NotFoundError(user_id)
        for key, value in data.items():
            setattr(row, key, value)
        session.add(row)
        session.commit()
        session.refresh(row)
        return _dump(row)


def delete_user(user_id: int) -> None:
    eng = _prepare_schema()
    with Session(eng) as session:
        row = session.get(StaffUser, user_id)
        if row is None:
            raise NotFoundError(user_id)
        session.delete(row)
        session.commit()
