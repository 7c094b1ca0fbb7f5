from typing import TYPE_CHECKING, List

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from catalog_search.db.session import Base
from catalog_search.models.common import LookupMixin

if TYPE_CHECKING:
    from catalog_search.models.product import Product


class Brand(Base, LookupMixin):
    __tablename__ = "brands"
    products: Mapped[List["Product"]] = relationship(back_populates="brand")


class Material(Base, LookupMixin):
    __tablename__ = "materials"
    products: Mapped[List["Product"]] = relationship(back_populates="material")


class LensClass(Base, LookupMixin):
    __tablename__ = "lens_classes"
    products: Mapped[List["Product"]] = relationship(back_populates="lens_class")


class Treatment(Base, LookupMixin):
    __tablename__ = "treatments"
    products: Mapped[List["Product"]] = relationship(back_populates="treatment")


class Photochromic(Base, LookupMixin):
    __tablename__ = "photochromics"
    products: Mapped[List["Product"]] = relationship(back_populates="photochromic")


class LensType(Base, LookupMixin):
    __tablename__ = "lens_types"
    products: Mapped[List["Product"]] = relationship(back_populates="lens_type")


class Supplier(Base, LookupMixin):
    __tablename__ = "suppliers"
    nit: Mapped[str | None] = mapped_column(String(40), nullable=True)
    city: Mapped[str | None] = mapped_column(String(120), nullable=True)
    products: Mapped[List["Product"]] = relationship(back_populates="supplier")
